"""
Command Safety Validator
Denylist of destructive shell commands. A batch containing any match is
rejected as a whole before anything is executed.
"""

import logging
import re
from typing import List, Tuple

from wp_healer.core.exceptions import UnsafeCommandError

logger = logging.getLogger(__name__)

# Start of a command: beginning of line, after a separator, or after sudo
_CMD = r'(?:^|[;&|(]\s*|\bsudo\s+)'

DANGEROUS_PATTERNS: List[Tuple[str, 're.Pattern']] = [
    # Disk wipe
    ('disk wipe', re.compile(_CMD + r'dd\b', re.IGNORECASE)),
    ('disk wipe', re.compile(r'\bmkfs(\.\w+)?\b', re.IGNORECASE)),
    ('disk wipe', re.compile(r'\bfdisk\b', re.IGNORECASE)),
    ('disk wipe', re.compile(_CMD + r'format\b', re.IGNORECASE)),
    ('disk wipe', re.compile(r'>\s*/dev/(?!null\b)', re.IGNORECASE)),

    # Recursive force delete, flags clustered or split
    ('recursive delete', re.compile(
        r'\brm\b'
        r'(?=[^;&|]*\s(?:-[a-zA-Z]*[rR]|--recursive\b))'
        r'(?=[^;&|]*\s(?:-[a-zA-Z]*f|--force\b))'
    )),
    ('recursive delete', re.compile(r'\brm\b.*\s/\s*$')),
    ('recursive delete', re.compile(r'\brm\b.*\s/\*')),
    ('recursive delete', re.compile(r'\brm\b.*\.\./')),

    # Privilege escalation
    ('privilege escalation', re.compile(_CMD + r'sudo\b')),
    ('privilege escalation', re.compile(_CMD + r'su\b')),
    ('privilege escalation', re.compile(r'\bchmod\b.*\b777\b')),
    ('privilege escalation', re.compile(r'\bchown\b.*\broot\b')),
    ('privilege escalation', re.compile(r'\bpasswd\b')),
    ('privilege escalation', re.compile(r'\buserdel\b')),

    # Process and service termination
    ('process termination', re.compile(r'\bkill\b.*-9\b')),
    ('process termination', re.compile(r'\bpkill\b')),
    ('process termination', re.compile(r'\bkillall\b')),
    ('service termination', re.compile(r'\bshutdown\b')),
    ('service termination', re.compile(r'\breboot\b')),
    ('service termination', re.compile(_CMD + r'halt\b')),
    ('service termination', re.compile(r'\bpoweroff\b')),
    ('service termination', re.compile(r'\binit\s+[06]\b')),
    ('service termination', re.compile(r'\bsystemctl\s+stop\b')),

    # Remote code piping and listeners
    ('remote code execution', re.compile(r'\b(curl|wget)\b.*\|\s*(ba|z|da)?sh\b')),
    ('network listener', re.compile(r'\bn(et)?cat\b.*\s-[a-z]*l', re.IGNORECASE)),
    ('network listener', re.compile(r'\bnc\b.*\s-[a-z]*l', re.IGNORECASE)),

    # Destructive SQL
    ('destructive SQL', re.compile(r'\bDROP\s+(DATABASE|TABLE)\b', re.IGNORECASE)),
    ('destructive SQL', re.compile(r'\bTRUNCATE\b', re.IGNORECASE)),

    # Fork bomb
    ('fork bomb', re.compile(r':\s*\(\s*\)\s*\{.*:\s*\|\s*:\s*&.*\}'))
]


def executable_lines(commands: List[str]) -> List[str]:
    """Commands stripped, without blank lines and '#' comments"""
    lines = []
    for command in commands:
        trimmed = command.strip()
        if trimmed and not trimmed.startswith('#'):
            lines.append(trimmed)
    return lines


class CommandSafetyValidator:
    """Validates command batches against the denylist"""

    def __init__(self, patterns: List[Tuple[str, 're.Pattern']] = None):
        self.patterns = patterns or DANGEROUS_PATTERNS

    def check(self, command: str) -> Tuple[bool, str]:
        """
        Check a single command

        Returns:
            Tuple[bool, str]: Whether it is safe, and the matched category when it is not
        """
        for category, pattern in self.patterns:
            if pattern.search(command):
                return False, category
        return True, ''

    def find_unsafe(self, commands: List[str]) -> List[str]:
        """Return the commands of a batch that match the denylist"""
        unsafe = []
        for command in executable_lines(commands):
            safe, category = self.check(command)
            if not safe:
                logger.warning(f"Blocked dangerous command ({category}): {command}")
                unsafe.append(command)
        return unsafe

    def validate(self, commands: List[str]):
        """
        Validate a batch

        Raises:
            UnsafeCommandError: If any command in the batch is dangerous
        """
        unsafe = self.find_unsafe(commands)
        if unsafe:
            raise UnsafeCommandError(unsafe)
