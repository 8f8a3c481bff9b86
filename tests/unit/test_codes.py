"""
Unit tests for ferry.codes module.

Created by orpheus497
"""

import pytest

from ferry.codes import CodeGenerator
from ferry.constants import CODE_ALPHABET_BASE36, CODE_ALPHABET_NUMERIC
from ferry.errors import ConfigError, ErrorCode


class TestCodeGeneration:
    """Test rendezvous code generation."""

    def test_default_is_six_digits(self):
        generator = CodeGenerator()
        code = generator.generate()
        assert len(code) == 6
        assert all(ch in CODE_ALPHABET_NUMERIC for ch in code)

    def test_base36_alphabet(self):
        generator = CodeGenerator("base36", 8)
        for _ in range(50):
            code = generator.generate()
            assert len(code) == 8
            assert all(ch in CODE_ALPHABET_BASE36 for ch in code)

    def test_codes_vary(self):
        generator = CodeGenerator("base36", 10)
        codes = {generator.generate() for _ in range(100)}
        assert len(codes) > 90

    def test_keyspace(self):
        assert CodeGenerator("numeric", 6).keyspace == 10**6
        assert CodeGenerator("base36", 4).keyspace == 36**4

    def test_unknown_alphabet_rejected(self):
        with pytest.raises(ConfigError) as exc_info:
            CodeGenerator("hex")
        assert exc_info.value.code == ErrorCode.E703_INVALID_CONFIG

    def test_non_positive_length_rejected(self):
        with pytest.raises(ConfigError):
            CodeGenerator("numeric", 0)


class TestCodeNormalization:
    """Test cleanup of typed codes."""

    def test_strips_separators(self):
        assert CodeGenerator().normalize(" 12-34 56") == "123456"

    def test_numeric_drops_letters(self):
        assert CodeGenerator().normalize("12ab34") == "1234"

    def test_base36_uppercases(self):
        assert CodeGenerator("base36").normalize("ab-c12x") == "ABC12X"

    def test_validity(self):
        generator = CodeGenerator()
        assert generator.is_valid("482913") is True
        assert generator.is_valid("48291") is False
        assert generator.is_valid("4829131") is False
        assert generator.is_valid("48291A") is False

    def test_generated_codes_are_valid(self):
        generator = CodeGenerator("base36", 6)
        assert generator.is_valid(generator.generate())
