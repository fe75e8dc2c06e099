"""Turn LaTeX-flavoured model output into plain display text.

The rules run in a fixed order. Specific physics formulas are collapsed before
the generic fraction and exponent rules see them, and the brace/backslash
cleanup only runs once every command that needs braces has been rewritten.
"""
from __future__ import annotations

import dataclasses
import re
import typing as t

Replacement = t.Union[str, t.Callable[["re.Match[str]"], str]]

FRACTION_GLYPHS: dict[tuple[str, str], str] = {
    ("1", "2"): "½",
    ("1", "3"): "⅓",
    ("2", "3"): "⅔",
    ("1", "4"): "¼",
    ("3", "4"): "¾",
    ("1", "5"): "⅕",
    ("2", "5"): "⅖",
    ("3", "5"): "⅗",
    ("4", "5"): "⅘",
    ("1", "6"): "⅙",
    ("5", "6"): "⅚",
    ("1", "8"): "⅛",
    ("3", "8"): "⅜",
    ("5", "8"): "⅝",
    ("7", "8"): "⅞",
}

SUPERSCRIPTS: dict[str, str] = {
    "0": "⁰", "1": "¹", "2": "²", "3": "³", "4": "⁴",
    "5": "⁵", "6": "⁶", "7": "⁷", "8": "⁸", "9": "⁹",
    "a": "ᵃ", "b": "ᵇ", "c": "ᶜ", "d": "ᵈ", "e": "ᵉ",
    "f": "ᶠ", "g": "ᵍ", "h": "ʰ", "i": "ⁱ", "j": "ʲ",
    "k": "ᵏ", "l": "ˡ", "m": "ᵐ", "n": "ⁿ", "o": "ᵒ",
    "p": "ᵖ", "r": "ʳ", "s": "ˢ", "t": "ᵗ", "u": "ᵘ",
    "v": "ᵛ", "w": "ʷ", "x": "ˣ", "y": "ʸ", "z": "ᶻ",
    "+": "⁺", "-": "⁻", "=": "⁼", "(": "⁽", ")": "⁾",
}

GREEK_LETTERS: dict[str, str] = {
    "\\alpha": "α", "\\beta": "β", "\\gamma": "γ", "\\delta": "δ", "\\Delta": "Δ",
    "\\epsilon": "ε", "\\theta": "θ", "\\lambda": "λ", "\\mu": "μ", "\\nu": "ν",
    "\\pi": "π", "\\rho": "ρ", "\\sigma": "σ", "\\tau": "τ", "\\phi": "φ",
    "\\psi": "ψ", "\\omega": "ω", "\\Omega": "Ω", "\\Sigma": "Σ",
}

OPERATORS: dict[str, str] = {
    "\\times": "×", "\\cdot": "·", "\\div": "÷", "\\pm": "±",
    "\\leq": "≤", "\\geq": "≥", "\\neq": "≠", "\\approx": "≈",
    "\\infty": "∞", "\\partial": "∂", "\\nabla": "∇",
    "\\rightarrow": "→", "\\leftarrow": "←", "\\Rightarrow": "⇒",
    "\\sqrt": "√", "\\sum": "Σ", "\\int": "∫", "\\propto": "∝",
}

COMBINING_ARROW = "\u20d7"
COMBINING_HAT = "\u0302"


def fraction_symbol(numerator: str, denominator: str) -> str:
    n = str(numerator).strip()
    d = str(denominator).strip()
    glyph = FRACTION_GLYPHS.get((n, d))
    if glyph:
        return glyph
    if n and d:
        return f"{n}/{d}"
    # A fraction marker we could not resolve still reads best as a half.
    return "½"


def to_superscript(text: str) -> str:
    return "".join(SUPERSCRIPTS.get(ch.lower(), ch) for ch in str(text))


@dataclasses.dataclass(frozen=True)
class RewriteRule:
    """One regex rewrite. `literal` rules replace plain substrings instead."""

    name: str
    pattern: str
    replacement: Replacement
    flags: int = 0
    literal: bool = False

    def apply(self, text: str) -> str:
        if self.literal:
            return text.replace(self.pattern, t.cast(str, self.replacement))
        return re.sub(self.pattern, self.replacement, text, flags=self.flags)


def _substitution_rules(prefix: str, table: dict[str, str]) -> list[RewriteRule]:
    return [RewriteRule(f"{prefix}:{src}", src, dst, literal=True) for src, dst in table.items()]


# 0. math delimiters: \( x \), \[ x \], $$ x $$ keep only their content.
DELIMITER_RULES: list[RewriteRule] = [
    RewriteRule("inline-paren-delimiters", r"\\\((.*?)\\\)", r"\1", re.DOTALL),
    RewriteRule("display-bracket-delimiters", r"\\\[(.*?)\\\]", r"\1", re.DOTALL),
    RewriteRule("display-dollar-delimiters", r"\$\$(.+?)\$\$", r"\1", re.DOTALL),
]

# 1. known formulas, matched before any generic fraction/exponent rule.
FORMULA_RULES: list[RewriteRule] = [
    RewriteRule(
        "kinetic-energy-braced",
        r"\\frac\s*\{\s*1\s*\}\s*\{\s*2\s*\}\s*m\s*v\s*\^\s*\{?\s*2\s*\}?",
        "½mv²",
        re.IGNORECASE,
    ),
    RewriteRule("kinetic-energy-bare", r"\\frac\s*1\s*2\s*m\s*v\s*\^\s*2", "½mv²", re.IGNORECASE),
    RewriteRule("kinetic-energy-parenthesized", r"\(1/2\)\s*m\s*v\s*\^\s*2", "½mv²", re.IGNORECASE),
    RewriteRule("kinetic-energy-slash", r"1/2\s*m\s*v\^2", "½mv²", re.IGNORECASE),
    RewriteRule("potential-energy", r"\bm\s*g\s*h\b", "mgh", re.IGNORECASE),
    RewriteRule("mass-energy", r"E\s*=\s*m\s*c\s*\^\s*\{?\s*2\s*\}?", "E = mc²", re.IGNORECASE),
    RewriteRule("mass-energy-product", r"m\s*c\s*\^\s*\{?\s*2\s*\}?", "mc²", re.IGNORECASE),
]

# 2. generic fractions; the bare \frac fallback must come last.
FRACTION_RULES: list[RewriteRule] = [
    RewriteRule(
        "fraction-braced",
        r"\\frac\s*\{([^{}]+)\}\s*\{([^{}]+)\}",
        lambda m: fraction_symbol(m.group(1), m.group(2)),
    ),
    RewriteRule("fraction-digits", r"\\frac\s*(\d)\s*(\d)", lambda m: fraction_symbol(m.group(1), m.group(2))),
    RewriteRule("fraction-dangling", r"\\frac\b", "½"),
]

# 3. exponents.
EXPONENT_RULES: list[RewriteRule] = [
    RewriteRule("exponent-braced", r"\^\{([^}]+)\}", lambda m: to_superscript(m.group(1).strip())),
    RewriteRule("exponent-digits", r"\^(\d+)", lambda m: to_superscript(m.group(1))),
    RewriteRule("exponent-letter", r"\^([a-zA-Z])", lambda m: to_superscript(m.group(1))),
]

# 4-5. name tables, plain substring replacement.
GREEK_RULES = _substitution_rules("greek", GREEK_LETTERS)
OPERATOR_RULES = _substitution_rules("operator", OPERATORS)

# 6. \sqrt has already become √ by now.
ROOT_RULES: list[RewriteRule] = [
    RewriteRule("square-root", r"√\{([^}]+)\}", r"√(\1)"),
]

# 7. subscripts.
SUBSCRIPT_RULES: list[RewriteRule] = [
    RewriteRule("subscript-braced", r"_\{([^}]+)\}", r"[\1]"),
    RewriteRule("subscript-single", r"_([a-zA-Z0-9])", r"[\1]"),
]

# 8. text wrappers.
WRAPPER_RULES: list[RewriteRule] = [
    RewriteRule("text-wrapper", r"\\text\{([^}]+)\}", r"\1"),
    RewriteRule("mathrm-wrapper", r"\\mathrm\{([^}]+)\}", r"\1"),
    RewriteRule("mathbf-wrapper", r"\\mathbf\{([^}]+)\}", r"\1"),
]

# 9. accents.
ACCENT_RULES: list[RewriteRule] = [
    RewriteRule("vector-accent", r"\\vec\{([^}]+)\}", r"\1" + COMBINING_ARROW),
    RewriteRule("hat-accent", r"\\hat\{([^}]+)\}", r"\1" + COMBINING_HAT),
]

# 10. spacing commands.
SPACING_RULES: list[RewriteRule] = [
    RewriteRule("quad", "\\quad", "  ", literal=True),
    RewriteRule("qquad", "\\qquad", "    ", literal=True),
    RewriteRule("thin-space", "\\,", " ", literal=True),
    RewriteRule("medium-space", "\\;", " ", literal=True),
    RewriteRule("negative-space", "\\!", "", literal=True),
    RewriteRule("control-space", "\\ ", " ", literal=True),
]

# 11. cleanup of whatever markup survived.
CLEANUP_RULES: list[RewriteRule] = [
    RewriteRule("strip-braces", r"\{([^{}]*)\}", r"\1"),
    RewriteRule("strip-backslashes", "\\", "", literal=True),
    RewriteRule("empty-fraction", r"\(\s*\)\s*/\s*\(\s*\)", "½"),
    RewriteRule("collapse-spaces", r"  +", " "),
]

PIPELINE: tuple[RewriteRule, ...] = tuple(
    DELIMITER_RULES
    + FORMULA_RULES
    + FRACTION_RULES
    + EXPONENT_RULES
    + GREEK_RULES
    + OPERATOR_RULES
    + ROOT_RULES
    + SUBSCRIPT_RULES
    + WRAPPER_RULES
    + ACCENT_RULES
    + SPACING_RULES
    + CLEANUP_RULES
)


def normalize(raw: str | None, rules: t.Iterable[RewriteRule] = PIPELINE) -> str:
    if not raw:
        return ""
    text = str(raw)
    for rule in rules:
        text = rule.apply(text)
    return text
