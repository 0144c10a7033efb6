# API endpoints
