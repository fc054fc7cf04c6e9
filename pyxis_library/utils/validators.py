from typing import Optional


class TextValidator:
    """Basic checks for form input coming from the signup/login pages."""

    @staticmethod
    def is_blank(text: Optional[str]) -> bool:
        return text is None or not str(text).strip()

    @staticmethod
    def all_present(*values: Optional[str]) -> bool:
        return not any(TextValidator.is_blank(v) for v in values)

    @staticmethod
    def normalize_query(query: Optional[str]) -> str:
        if query is None:
            return ""
        return " ".join(query.split())

    @staticmethod
    def parse_id(raw) -> Optional[int]:
        """Coerce a user/reservation id from form or JSON input; None when not a positive integer."""
        if isinstance(raw, bool):
            return None
        try:
            value = int(str(raw).strip())
        except (TypeError, ValueError):
            return None
        return value if value > 0 else None
