"""
Pattern rules for the CodeScan adapters.
Each capability carries its own small rule table; a rule is a set of
line-oriented regex patterns plus the metadata copied onto every finding.
"""

import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Tuple

from mcpscan.protocol import Severity


@dataclass
class VulnerabilityRule:
    """One regex-driven check."""

    rule_id: str
    severity: Severity
    description: str
    recommendation: str
    patterns: List[str]  # Regex patterns
    flags: int = re.IGNORECASE
    _compiled: List[re.Pattern] = field(default_factory=list, repr=False, compare=False)

    def __post_init__(self) -> None:
        for pattern in self.patterns:
            try:
                self._compiled.append(re.compile(pattern, self.flags))
            except re.error:
                pass

    def check(self, content: str) -> List[Dict[str, Any]]:
        """
        Check content against rule patterns.

        Returns:
            One match per offending line: line number, stripped line and
            the pattern that hit.
        """
        matches = []
        lines = content.split('\n')

        for line_num, line in enumerate(lines, start=1):
            for compiled in self._compiled:
                if compiled.search(line):
                    matches.append({
                        "line_number": line_num,
                        "snippet": line.strip(),
                        "pattern_used": compiled.pattern,
                    })
                    break  # Don't double-count same line

        return matches


CSHARP_RULES = [
    VulnerabilityRule(
        rule_id="CSHARP-SQL-INJECTION",
        severity=Severity.CRITICAL,
        description="SQL command built by string concatenation",
        recommendation="Use SqlParameter / parameterized queries instead of concatenating input.",
        patterns=[
            r'CommandText\s*=\s*".*"\s*\+',
            r'new\s+SqlCommand\s*\(\s*".*"\s*\+',
            r'\.ExecuteSqlRaw\s*\(\s*\$"',
        ],
    ),
    VulnerabilityRule(
        rule_id="CSHARP-COMMAND-INJECTION",
        severity=Severity.CRITICAL,
        description="Process started with a concatenated command line",
        recommendation="Avoid using user input in command execution.",
        patterns=[r'Process\.Start\s*\(.*\+.*\)'],
    ),
    VulnerabilityRule(
        rule_id="CSHARP-HARDCODED-CREDENTIALS",
        severity=Severity.HIGH,
        description="Hardcoded password or connection string",
        recommendation="Load secrets from configuration providers or a vault.",
        patterns=[
            r'(password|pwd)\s*=\s*"[^"]{3,}"',
            r'connectionString\s*=\s*".*password=.*"',
        ],
    ),
    VulnerabilityRule(
        rule_id="CSHARP-INSECURE-DESERIALIZATION",
        severity=Severity.HIGH,
        description="Insecure deserialization",
        recommendation="Do not use BinaryFormatter or TypeNameHandling.All on untrusted data.",
        patterns=[
            r'BinaryFormatter\s*\(\s*\)',
            r'TypeNameHandling\s*=\s*TypeNameHandling\.All',
        ],
        flags=0,
    ),
    VulnerabilityRule(
        rule_id="CSHARP-WEAK-CRYPTO",
        severity=Severity.MEDIUM,
        description="Weak cryptographic algorithm",
        recommendation="Use SHA-256 or stronger hashes and AES for encryption.",
        patterns=[
            r'new\s+(MD5|SHA1|DES)CryptoServiceProvider\s*\(',
            r'\b(MD5|SHA1)\.Create\s*\(',
        ],
        flags=0,
    ),
    VulnerabilityRule(
        rule_id="CSHARP-DEBUG-MODE",
        severity=Severity.MEDIUM,
        description="Debug mode enabled in production",
        recommendation="Disable debug mode in production environments.",
        patterns=[r'compilation\s+debug\s*=\s*["\']true["\']'],
    ),
]

ANGULAR_RULES = [
    VulnerabilityRule(
        rule_id="ANGULAR-BYPASS-SECURITY",
        severity=Severity.CRITICAL,
        description="DomSanitizer security bypass",
        recommendation="Avoid bypassSecurityTrust*; sanitize values instead.",
        patterns=[r'bypassSecurityTrust(Html|Script|Url|ResourceUrl|Style)\s*\('],
        flags=0,
    ),
    VulnerabilityRule(
        rule_id="ANGULAR-XSS",
        severity=Severity.HIGH,
        description="Binding to innerHTML",
        recommendation="Bind text with interpolation or sanitize HTML before binding.",
        patterns=[r'\[innerHTML\]\s*=', r'\.nativeElement\.innerHTML\s*='],
    ),
    VulnerabilityRule(
        rule_id="ANGULAR-EVAL",
        severity=Severity.CRITICAL,
        description="Use of eval()",
        recommendation="Never evaluate strings as code.",
        patterns=[r'\beval\s*\('],
    ),
]

REACT_RULES = [
    VulnerabilityRule(
        rule_id="REACT-XSS",
        severity=Severity.HIGH,
        description="dangerouslySetInnerHTML usage",
        recommendation="Sanitize HTML (e.g. DOMPurify) before using dangerouslySetInnerHTML.",
        patterns=[r'dangerouslySetInnerHTML'],
        flags=0,
    ),
    VulnerabilityRule(
        rule_id="REACT-UNSAFE-HREF",
        severity=Severity.HIGH,
        description="javascript: URL in href",
        recommendation="Validate URLs and reject the javascript: scheme.",
        patterns=[r'href\s*=\s*[{"\']\s*[`"\']?javascript:'],
    ),
    VulnerabilityRule(
        rule_id="REACT-TARGET-BLANK",
        severity=Severity.MEDIUM,
        description="target=\"_blank\" without rel=\"noopener noreferrer\"",
        recommendation="Add rel=\"noopener noreferrer\" to links opening a new tab.",
        patterns=[r'target\s*=\s*["\']_blank["\'](?!.*noopener)'],
    ),
    VulnerabilityRule(
        rule_id="REACT-LOCALSTORAGE",
        severity=Severity.MEDIUM,
        description="Sensitive data kept in localStorage",
        recommendation="Keep tokens in httpOnly cookies rather than localStorage.",
        patterns=[r'localStorage\.setItem\s*\(\s*["\'](token|jwt|auth|password)'],
    ),
]

JQUERY_RULES = [
    VulnerabilityRule(
        rule_id="JQUERY-XSS-HTML",
        severity=Severity.HIGH,
        description="Dynamic content inserted as HTML",
        recommendation="Use .text() or sanitize before .html()/.append().",
        patterns=[r'\.(html|append|prepend|after|before)\s*\(\s*[^)"\']*\+'],
    ),
    VulnerabilityRule(
        rule_id="JQUERY-XSS-PARSE-HTML",
        severity=Severity.CRITICAL,
        description="$.parseHTML on dynamic input",
        recommendation="Avoid parsing untrusted markup.",
        patterns=[r'\$\.parseHTML\s*\('],
    ),
    VulnerabilityRule(
        rule_id="JQUERY-GLOBALEVAL",
        severity=Severity.CRITICAL,
        description="$.globalEval usage",
        recommendation="Never evaluate strings as code.",
        patterns=[r'\$\.globalEval\s*\('],
    ),
    VulnerabilityRule(
        rule_id="JQUERY-GETSCRIPT",
        severity=Severity.HIGH,
        description="$.getScript loads and executes remote code",
        recommendation="Bundle scripts instead of loading them at runtime.",
        patterns=[r'\$\.getScript\s*\('],
    ),
]

NODE_RULES = [
    VulnerabilityRule(
        rule_id="NODE-EVAL",
        severity=Severity.CRITICAL,
        description="Use of eval() function",
        recommendation="Never use eval(); use JSON.parse() for data parsing.",
        patterns=[r'\beval\s*\(', r'new\s+Function\s*\('],
    ),
    VulnerabilityRule(
        rule_id="NODE-HARDCODED-SECRETS",
        severity=Severity.HIGH,
        description="Hardcoded password or API key",
        recommendation="Use environment variables or a secrets vault.",
        patterns=[r'(password|pwd|api_key|apikey|secret|token)\s*[=:]\s*["\'][^"\']{4,}["\']'],
    ),
    VulnerabilityRule(
        rule_id="NODE-COMMAND-INJECTION",
        severity=Severity.HIGH,
        description="Command injection vulnerability",
        recommendation="Use execFile() or spawn() with an argument list.",
        patterns=[r'\bexec(Sync)?\s*\(.*\+.*\)'],
        flags=0,
    ),
    VulnerabilityRule(
        rule_id="NODE-SQL-INJECTION",
        severity=Severity.HIGH,
        description="SQL injection vulnerability",
        recommendation="Use parameterized queries or prepared statements.",
        patterns=[r'query\s*\(\s*["\'`].*(\+|\$\{)'],
    ),
    VulnerabilityRule(
        rule_id="NODE-WEAK-CRYPTO",
        severity=Severity.MEDIUM,
        description="Weak hash algorithm",
        recommendation="Use SHA-256 or stronger; bcrypt/argon2 for passwords.",
        patterns=[r'createHash\s*\(\s*["\'](md5|sha1)["\']'],
    ),
    VulnerabilityRule(
        rule_id="NODE-WEAK-RANDOM",
        severity=Severity.LOW,
        description="Insecure random number generation",
        recommendation="Use crypto.randomBytes() for security-sensitive values.",
        patterns=[r'Math\.random\s*\(\s*\)'],
        flags=0,
    ),
    VulnerabilityRule(
        rule_id="NODE-INSECURE-HTTP",
        severity=Severity.INFO,
        description="Plain HTTP URL",
        recommendation="Use HTTPS endpoints.",
        patterns=[r'["\']http://(?!localhost|127\.0\.0\.1)'],
    ),
]

RULES_BY_CAPABILITY: Dict[str, List[VulnerabilityRule]] = {
    "csharp": CSHARP_RULES,
    "angular": ANGULAR_RULES,
    "react": REACT_RULES,
    "jquery": JQUERY_RULES,
    "node": NODE_RULES,
}


def iter_rules() -> Iterator[Tuple[str, VulnerabilityRule]]:
    """(capability, rule) for every rule, in table order."""
    for capability, rules in RULES_BY_CAPABILITY.items():
        for rule in rules:
            yield capability, rule
