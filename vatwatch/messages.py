"""User- and admin-facing message texts."""

from __future__ import annotations

# ── Check cycle ──────────────────────────────────────────────────────


def vat_now_valid(vat: str) -> str:
    return f"\U0001f7e2 Congratulations, VAT number '{vat}' is now VALID!"


def vat_expired(vat: str) -> str:
    return (
        f"\U0001f534 Your VAT number '{vat}' is no longer monitored because it's still invalid "
        "and it's been too long since you registered it. Make sure you entered the right VAT "
        "number or that the entity it belongs to actually applied for registration in VIES."
    )


def monitoring_suspended(vat: str) -> str:
    return (
        f"\U0001f534 Sorry, something went wrong and we had to stop monitoring the VAT number "
        f"'{vat}'. We'll investigate what happened and try to resume monitoring. We'll notify "
        "you when that happens. Sorry for the inconvenience."
    )


def admin_unrecoverable_error(vat: str, owner_id: str, error: str) -> str:
    return (
        f"\U0001f534\U0001f534\U0001f534 [ADMIN] There was an error while processing VAT number "
        f"'{vat}' (chat {owner_id}): {error}"
    )


def monitoring_resumed(vat: str) -> str:
    return f"We resumed monitoring your VAT number '{vat}'."


# ── Submission ───────────────────────────────────────────────────────

MISSING_OWNER = "Missing Telegram Chat ID."
MISSING_VAT = "Missing VAT number."
VAT_TOO_SHORT = "VAT number is in invalid format (expected at least 3 symbols)."
TECHNICAL_DIFFICULTIES = (
    "\U0001f534 We're having some technical difficulties processing your request, "
    "please try again later."
)


def vat_is_valid(vat: str) -> str:
    return f"\U0001f7e2 VAT number '{vat}' is valid."


def vat_monitoring_started(vat: str, expiration_days: int) -> str:
    return (
        f"\U0001f553 VAT number '{vat}' is not registered in VIES yet. We will monitor it for "
        f"{expiration_days} days and notify you if it becomes valid (or if the monitoring "
        "period expires)."
    )


def capacity_reached(limit: int) -> str:
    return f"\U0001f534 Sorry, you reached the limit of maximum VAT numbers you can monitor ({limit})."


def vat_invalid_input(vat: str) -> str:
    return (
        f"\U0001f534 There was a problem validating your VAT number '{vat}'. "
        "Make sure it is in the correct format."
    )


def vies_unavailable(vat: str) -> str:
    return (
        f"\U0001f7e1 There was a problem validating your VAT number '{vat}' (looks like VIES "
        "validation service is not available right now). We'll keep monitoring it for a while."
    )


def vies_transient_problem(vat: str) -> str:
    return (
        f"\U0001f7e1 There was a problem validating your VAT number '{vat}'. "
        "We'll keep monitoring it for a while."
    )


def vies_broken(vat: str) -> str:
    return (
        f"\U0001f534 There was a problem validating your VAT number '{vat}'. Looks like VIES "
        "validation service is not working as expected. Please try again later."
    )


def vat_unmonitored(vat: str) -> str:
    return f"VAT number '{vat}' is no longer being monitored."


ALL_UNMONITORED = "You no longer monitor any VAT numbers."
NOTHING_MONITORED = "You are not monitoring any VAT numbers."


def monitored_list(vats: list[str]) -> str:
    joined = ", ".join(f"'{vat}'" for vat in vats)
    return f"You monitor the following VAT numbers:\n\n{joined}."
