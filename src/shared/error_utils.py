from typing import Optional


class ErrorUtils:
    @staticmethod
    def format_error_response(message: str, error_type: str, status_code: Optional[int] = None) -> dict:
        """
        Formats a consistent error response dictionary.

        Args:
            message: The error message to include in the response.
            error_type: The type of error (e.g., "capacity_exceeded", "panel_error").
            status_code: Upstream panel status code, when the error came from the panel.

        Returns:
            A dictionary with the error details.
        """
        error = {
            "message": message,
            "type": error_type
        }
        if status_code is not None:
            error["panel_status_code"] = status_code
        return {"error": error}
