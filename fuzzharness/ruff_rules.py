"""Output markers and rule lists used when fuzzing the ruff linter and formatter."""

# Try not to add D* rules unless the rule is really known to be broken,
# otherwise results may be invalid.
BROKEN_ITEMS_TO_IGNORE: tuple[str, ...] = (
    r'"stack backtrace:\n"',
    "AddressSanitizer: stack-overflow",
)

BROKEN_ITEMS_TO_FIND: tuple[str, ...] = (
    "std::rt::lang_start_internal",
    "catch_unwind::{{closure}}",
    "0: rust_begin_unwind",
    "AddressSanitizer:",
    "LeakSanitizer:",
)

INVALID_RULES: tuple[str, ...] = ()


def calculate_ignored_rules() -> str:
    """Return the comma separated list of upper-case rules that must be ignored."""
    return ",".join(rule for rule in INVALID_RULES if rule.upper() == rule)


def contains_broken_item(content: str) -> bool:
    """Tell whether the output holds any marker of a crash."""
    return any(item in content for item in BROKEN_ITEMS_TO_FIND)


def contains_ignored_item(content: str) -> bool:
    """Tell whether the output holds any marker that makes a crash uninteresting."""
    return any(item in content for item in BROKEN_ITEMS_TO_IGNORE)