"""
Error Classifier - Rule-based classification of preview errors (NO AI)

Runs before a ghost-fix request is built. The model is told what kind of
error it is fixing and which imported packages cannot run in the preview;
it is not asked to figure that out itself.

Two levels:
- FixCategory: coarse, fixed-priority bucket that decides which extra
  context the fix request carries (package-missing > syntax > runtime)
- ErrorKind: fine-grained kind with suggestion, confidence and location,
  used for labels and for the context note
"""

import re
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, List, Match, Optional, Tuple


class FixCategory(str, Enum):
    PACKAGE_MISSING = "package-missing"
    SYNTAX = "syntax"
    RUNTIME = "runtime"


class ErrorKind(str, Enum):
    IMPORT_MISSING = "import-missing"
    REACT_HOOK_VIOLATION = "react-hook-violation"
    TYPE_ERROR = "type-error"
    SYNTAX = "syntax"
    RUNTIME = "runtime"
    STYLE = "style"
    UNKNOWN = "unknown"


ERROR_KIND_LABELS: Dict[ErrorKind, str] = {
    ErrorKind.SYNTAX: "Syntax Error",
    ErrorKind.RUNTIME: "Runtime Error",
    ErrorKind.TYPE_ERROR: "Type Error",
    ErrorKind.IMPORT_MISSING: "Missing Import",
    ErrorKind.STYLE: "Style Error",
    ErrorKind.REACT_HOOK_VIOLATION: "React Hook Violation",
    ErrorKind.UNKNOWN: "Unknown Error",
}

AUTO_FIXABLE_KINDS = (
    ErrorKind.IMPORT_MISSING,
    ErrorKind.TYPE_ERROR,
    ErrorKind.SYNTAX,
    ErrorKind.REACT_HOOK_VIOLATION,
)
AUTO_FIX_MIN_CONFIDENCE = 0.7

# Packages that cannot run in the browser preview
INCOMPATIBLE_PACKAGES = frozenset([
    "fs", "child_process", "net", "tls", "dgram", "cluster", "worker_threads",
    "express", "mongoose", "pg", "mysql2", "sqlite3", "better-sqlite3",
    "@prisma/client", "bcrypt", "sharp", "puppeteer", "nodemailer",
])

IMPORT_PATTERNS = [
    re.compile(r'''(?:^|[\s;])import\s[^'"`;]*?\sfrom\s*['"]([^'"]+)['"]'''),
    re.compile(r'''(?:^|[\s;])import\s*['"]([^'"]+)['"]'''),
    re.compile(r'''\brequire\(\s*['"]([^'"]+)['"]\s*\)'''),
    re.compile(r'''\bimport\(\s*['"]([^'"]+)['"]\s*\)'''),
]

LOCATION_PATTERN = re.compile(r'(?:at\s+\w+\s+\()?([^\s()]+\.(?:tsx?|jsx?|css|mjs)):(\d+)(?::(\d+))?\)?')


@dataclass
class ClassifiedError:
    """Result of detailed classification"""
    kind: ErrorKind
    message: str
    original_error: str
    suggestion: str
    confidence: float  # 0.0 to 1.0
    file: Optional[str] = None
    line: Optional[int] = None
    column: Optional[int] = None
    context: Optional[str] = None

    @property
    def label(self) -> str:
        return ERROR_KIND_LABELS[self.kind]


# ============================================
# Suggestion templates
# ============================================

def _suggest_import(match: Match, raw: str) -> str:
    return f'Add or fix the import for "{match.group(1)}". Check if the module is installed or if the path is correct.'


def _suggest_hook(match: Match, raw: str) -> str:
    hook = match.group(1) if match.groups() else None
    if hook:
        return (f'Move the "{hook}" hook call to the top level of the component. '
                'Hooks cannot be called conditionally, inside loops, or in nested functions.')
    return ('Fix the hook ordering issue. Ensure all hooks are called unconditionally at the top level '
            'of the component, in the same order every render.')


def _suggest_type(match: Match, raw: str) -> str:
    if re.search(r'Cannot read propert', raw):
        return 'Add a null/undefined check before accessing the property. Use optional chaining (?.) or a guard clause.'
    if re.search(r'is not a function', raw):
        return f'"{match.group(1)}" is not a function. Check if it\'s imported correctly and is actually callable.'
    if re.search(r'is not defined', raw):
        return f'"{match.group(1)}" is not defined. Add the missing import or declaration.'
    if re.search(r'is not assignable to type', raw) and match.lastindex and match.lastindex >= 2:
        return f'Type mismatch: "{match.group(1)}" cannot be assigned to "{match.group(2)}". Fix the type or add a type assertion.'
    if re.search(r'Property .+ does not exist', raw) and match.lastindex and match.lastindex >= 2:
        return f'Property "{match.group(1)}" does not exist on type "{match.group(2)}". Check for typos or extend the type definition.'
    return f'Fix the type error: {match.group(0)}'


def _suggest_syntax(match: Match, raw: str) -> str:
    token_match = re.search(r'Unexpected token\s*[\'"]?([^\'"\s]+)', raw)
    if token_match:
        return (f'Fix the syntax error near unexpected token "{token_match.group(1)}". '
                'Check for missing brackets, parentheses, or operators.')
    if re.search(r'Unterminated string', raw):
        return 'Close the unterminated string literal. Check for missing quotes.'
    if re.search(r'Unexpected end of input', raw):
        return 'The code ends unexpectedly. Check for missing closing brackets, braces, or parentheses.'
    return f'Fix the syntax error: {match.group(0)}'


def _suggest_runtime(match: Match, raw: str) -> str:
    if re.search(r'Maximum call stack', raw):
        return ('Infinite recursion detected. Check for recursive calls without a proper base case, '
                'or circular useEffect dependencies.')
    if re.search(r'ReferenceError', raw) and match.lastindex:
        return f'Reference error: {match.group(1)}. Ensure the variable or function is declared and in scope.'
    return f'Fix the runtime error: {match.group(0)}'


def _suggest_style(match: Match, raw: str) -> str:
    return f'Fix the CSS/style issue with "{match.group(1)}". Check for typos in the property name or value.'


class ErrorClassifier:
    """
    Rule-based preview error classifier.

    All methods are classmethods; there is no shared instance.
    """

    # Coarse categories, checked in order
    CATEGORY_PATTERNS: List[Tuple[FixCategory, str]] = [
        (FixCategory.PACKAGE_MISSING,
         r'is\s+not\s+defined|Cannot\s+find\s+(?:module|name)|Module\s+not\s+found|'
         r'Failed\s+to\s+resolve\s+import|Could\s+not\s+resolve|is\s+not\s+a\s+function|'
         r'does\s+not\s+provide\s+an\s+export\s+named|is\s+not\s+exported\s+from'),
        (FixCategory.SYNTAX,
         r'SyntaxError|Unexpected\s+token|Unterminated|Unexpected\s+end\s+of\s+input|'
         r'Parse\s+error|Missing\s+semicolon|Unexpected\s+keyword|Expected\s+\S+\s+but\s+(?:found|got)'),
    ]

    # (kind, patterns, suggestion, confidence), first match wins
    DETAILED_PATTERNS: List[Tuple[ErrorKind, List[str], Callable[[Match, str], str], float]] = [
        (ErrorKind.IMPORT_MISSING, [
            r'Cannot find module [\'"]([^\'"]+)[\'"]',
            r'Module not found.*[\'"]([^\'"]+)[\'"]',
            r'Failed to resolve import [\'"]([^\'"]+)[\'"]',
            r'Could not resolve [\'"]([^\'"]+)[\'"]',
            r'is not exported from [\'"]([^\'"]+)[\'"]',
            r'does not provide an export named [\'"]([^\'"]+)[\'"]',
        ], _suggest_import, 0.95),

        (ErrorKind.REACT_HOOK_VIOLATION, [
            r'React Hook "(\w+)" is called conditionally',
            r'React Hook "(\w+)" is called in a function that is neither a React function component nor a custom React Hook',
            r'Rendered more hooks than during the previous render',
            r'Rendered fewer hooks than expected',
            r'Invalid hook call',
            r'Hooks can only be called inside.*the body of a function component',
        ], _suggest_hook, 0.98),

        (ErrorKind.TYPE_ERROR, [
            r'TypeError:\s*(.+)',
            r'Cannot read propert(?:y|ies) of (undefined|null)',
            r'(\w+) is not a function',
            r'(\w+) is not defined',
            r'Cannot assign to \'(\w+)\' because it is a read-only property',
            r'Type \'([^\']+)\' is not assignable to type \'([^\']+)\'',
            r'Property \'(\w+)\' does not exist on type \'([^\']+)\'',
            r'Argument of type \'([^\']+)\' is not assignable',
        ], _suggest_type, 0.9),

        (ErrorKind.SYNTAX, [
            r'SyntaxError:\s*(.+)',
            r'Unexpected token\s*[\'"]?(\S+)[\'"]?',
            r'Unterminated string literal',
            r'Missing semicolon',
            r'Unexpected end of input',
            r'Expected\s+[\'"]?(\S+)[\'"]?\s+but\s+(?:found|got)\s+[\'"]?(\S+)[\'"]?',
            r'Parse error',
            r'Unexpected keyword \'(\w+)\'',
        ], _suggest_syntax, 0.95),

        (ErrorKind.RUNTIME, [
            r'RangeError:\s*(.+)',
            r'Maximum call stack size exceeded',
            r'ReferenceError:\s*(.+)',
            r'URIError:\s*(.+)',
            r'InternalError:\s*(.+)',
            r'EvalError:\s*(.+)',
            r'Uncaught\s+(?:Error|Exception):\s*(.+)',
        ], _suggest_runtime, 0.85),

        (ErrorKind.STYLE, [
            r'Unknown CSS property [\'"]([^\'"]+)[\'"]',
            r'Invalid CSS value.*[\'"]([^\'"]+)[\'"]',
            r'CSSStyleDeclaration.*[\'"]([^\'"]+)[\'"]',
            r'Tailwind.*class.*[\'"]([^\'"]+)[\'"].*not found',
        ], _suggest_style, 0.8),
    ]

    @classmethod
    def classify(cls, message: str) -> FixCategory:
        """Coarse category of an error message"""
        for category, pattern in cls.CATEGORY_PATTERNS:
            if re.search(pattern, message or "", re.IGNORECASE):
                return category
        return FixCategory.RUNTIME

    @classmethod
    def classify_detailed(cls, raw_error: str) -> ClassifiedError:
        """Fine-grained classification with suggestion and source location"""
        trimmed = (raw_error or "").strip()
        file, line, column = cls.extract_location(trimmed)
        context = cls._extract_context(trimmed)

        for kind, patterns, suggest, confidence in cls.DETAILED_PATTERNS:
            for pattern in patterns:
                match = re.search(pattern, trimmed, re.IGNORECASE)
                if match:
                    return ClassifiedError(
                        kind=kind,
                        message=match.group(0),
                        original_error=trimmed,
                        suggestion=suggest(match, trimmed),
                        confidence=confidence,
                        file=file,
                        line=line,
                        column=column,
                        context=context,
                    )

        first_line = trimmed.split("\n")[0]
        return ClassifiedError(
            kind=ErrorKind.UNKNOWN,
            message=first_line[:200],
            original_error=trimmed,
            suggestion=f'Analyze and fix the error: "{first_line[:100]}"',
            confidence=0.3,
            file=file,
            line=line,
            column=column,
            context=context,
        )

    @classmethod
    def classify_errors(cls, raw_errors: List[str]) -> List[ClassifiedError]:
        """Classify a batch, drop (kind, message) duplicates, highest confidence first"""
        seen = set()
        results: List[ClassifiedError] = []
        for raw in raw_errors:
            classified = cls.classify_detailed(raw)
            key = (classified.kind, classified.message)
            if key not in seen:
                seen.add(key)
                results.append(classified)
        return sorted(results, key=lambda c: c.confidence, reverse=True)

    @staticmethod
    def is_auto_fixable(classified: ClassifiedError) -> bool:
        return classified.kind in AUTO_FIXABLE_KINDS and classified.confidence >= AUTO_FIX_MIN_CONFIDENCE

    @staticmethod
    def label_for(kind: ErrorKind) -> str:
        return ERROR_KIND_LABELS[kind]

    @staticmethod
    def extract_location(raw: str) -> Tuple[Optional[str], Optional[int], Optional[int]]:
        """file, line, column from "at Component (App.tsx:14:5)" or "App.tsx:14:5" """
        match = LOCATION_PATTERN.search(raw or "")
        if not match:
            return None, None, None
        column = int(match.group(3)) if match.group(3) else None
        return match.group(1), int(match.group(2)), column

    @staticmethod
    def _extract_context(raw: str) -> Optional[str]:
        lines = raw.split("\n")
        if len(lines) <= 1:
            return None
        return "\n".join(lines[:5])

    # ============================================
    # Import scanning
    # ============================================

    @staticmethod
    def package_name(specifier: str) -> Optional[str]:
        """'fs/promises' -> 'fs', '@scope/pkg/sub' -> '@scope/pkg', relative -> None"""
        if not specifier or specifier.startswith((".", "/")):
            return None
        if specifier.startswith("node:"):
            specifier = specifier[len("node:"):]
        parts = specifier.split("/")
        if specifier.startswith("@"):
            return "/".join(parts[:2]) if len(parts) >= 2 else None
        return parts[0]

    @classmethod
    def find_incompatible_imports(cls, files: Dict[str, str]) -> Dict[str, List[str]]:
        """Denylisted package -> sorted paths of the files importing it"""
        found: Dict[str, set] = {}
        for path, content in files.items():
            for pattern in IMPORT_PATTERNS:
                for match in pattern.finditer(content or ""):
                    package = cls.package_name(match.group(1))
                    if package in INCOMPATIBLE_PACKAGES:
                        found.setdefault(package, set()).add(path)
        return {package: sorted(paths) for package, paths in sorted(found.items())}

    @classmethod
    def build_fix_context(cls, error_message: str, files: Dict[str, str]) -> str:
        """Classification note injected into the fix request"""
        category = cls.classify(error_message)
        denylist = ", ".join(sorted(INCOMPATIBLE_PACKAGES))
        lines = [f"Error category: {category.value}"]

        incompatible = cls.find_incompatible_imports(files) if category == FixCategory.PACKAGE_MISSING else {}
        if incompatible:
            lines.append(
                "The preview runs in a browser sandbox. These imported packages cannot run there "
                "and must be removed or replaced with browser-compatible code:"
            )
            for package, paths in incompatible.items():
                lines.append(f"- {package} (imported in {', '.join(paths)})")
        else:
            lines.append(
                "The preview resolves any npm package automatically, except Node.js/server-only "
                f"packages ({denylist}). Missing identifiers usually need an import or declaration."
            )

        detailed = cls.classify_detailed(error_message)
        lines.append(f"Classification: {detailed.label} (confidence {detailed.confidence:.2f})")
        lines.append(f"Suggestion: {detailed.suggestion}")
        if detailed.file:
            location = detailed.file
            if detailed.line is not None:
                location += f":{detailed.line}"
            if detailed.column is not None:
                location += f":{detailed.column}"
            lines.append(f"Location: {location}")

        return "\n".join(lines)
