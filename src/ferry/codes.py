"""
Ferry - Rendezvous code generation.

Created by orpheus497

Codes are short lookup keys typed by a human, not secrets. Two alphabets
are supported: digits only (friendly to QR scanners and numeric keypads)
and uppercase base36 (for link-only sharing). They are not interchangeable:
a receiving prompt filters keystrokes to a single alphabet.
"""

import logging
import secrets

from .constants import CODE_ALPHABETS, CODE_LENGTH, DEFAULT_CODE_ALPHABET
from .errors import ConfigError, ErrorCode

logger = logging.getLogger(__name__)


class CodeGenerator:
    """Issues rendezvous codes over a fixed alphabet and length."""

    def __init__(self, alphabet: str = DEFAULT_CODE_ALPHABET, length: int = CODE_LENGTH):
        """
        Initialize the generator.

        Args:
            alphabet: Alphabet name, "numeric" or "base36"
            length: Number of characters per code

        Raises:
            ConfigError: If the alphabet is unknown or the length is not positive
        """
        if alphabet not in CODE_ALPHABETS:
            raise ConfigError(
                ErrorCode.E703_INVALID_CONFIG,
                f"Unknown code alphabet: {alphabet}",
                {"alphabet": alphabet, "valid": sorted(CODE_ALPHABETS)},
            )
        if length <= 0:
            raise ConfigError(
                ErrorCode.E703_INVALID_CONFIG, f"Code length must be positive, got {length}"
            )

        self.alphabet_name = alphabet
        self.alphabet = CODE_ALPHABETS[alphabet]
        self.length = length

    @property
    def keyspace(self) -> int:
        """Number of distinct codes this generator can produce."""
        return len(self.alphabet) ** self.length

    def generate(self) -> str:
        """Return a fresh code drawn from the system CSPRNG."""
        code = "".join(secrets.choice(self.alphabet) for _ in range(self.length))
        logger.debug(f"Generated {self.alphabet_name} rendezvous code")
        return code

    def normalize(self, raw: str) -> str:
        """
        Clean user input the way the code prompt does.

        Uppercases the text and drops every character outside the alphabet,
        so " 12-34 56" becomes "123456".
        """
        return "".join(ch for ch in raw.upper() if ch in self.alphabet)

    def is_valid(self, code: str) -> bool:
        """Check that a code has exactly the right length and alphabet."""
        return len(code) == self.length and all(ch in self.alphabet for ch in code)

    def __repr__(self) -> str:
        return f"CodeGenerator(alphabet={self.alphabet_name!r}, length={self.length})"
