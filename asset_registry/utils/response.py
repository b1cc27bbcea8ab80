"""Response envelopes for the registry's MCP tools."""

from typing import Any, Dict, List, Optional

from ..errors import PatternExhausted, RegistryError


def is_success(result: Dict[str, Any]) -> bool:
    """Check if a tool call succeeded."""
    return bool(result.get("ok"))


def success_response(data: Any, warnings: Optional[List[str]] = None) -> Dict[str, Any]:
    """Create a successful response envelope.

    Args:
        data: The response data
        warnings: Optional list of warning messages
    """
    response = {"ok": True, "data": data}
    if warnings:
        response["warnings"] = warnings
    return response


def error_response(
    message: str,
    code: Optional[str] = None,
    details: Optional[Dict[str, Any]] = None
) -> Dict[str, Any]:
    """Create an error response envelope.

    Args:
        message: Error message
        code: Optional error code
        details: Optional error details
    """
    error: Dict[str, Any] = {"message": message}
    if code:
        error["code"] = code
    if details:
        error["details"] = details
    return {"ok": False, "error": error}


def registry_error_response(exc: RegistryError) -> Dict[str, Any]:
    """Error envelope for a typed registry failure; the code is the exception class name."""
    details = None
    if isinstance(exc, PatternExhausted):
        details = {
            "pattern": exc.pattern,
            "attempts": exc.attempts,
            "last_candidate": exc.last_candidate,
        }
    return error_response(str(exc), code=type(exc).__name__, details=details)


def create_issue(
    severity: str,
    message: str,
    location: Optional[str] = None,
    code: Optional[str] = None,
) -> Dict[str, Any]:
    """Create a structured integrity issue.

    Args:
        severity: Issue severity ("error", "warning", "info")
        message: Issue message
        location: Optional node id
        code: Optional issue code
    """
    issue = {"severity": severity, "message": message}
    if location:
        issue["location"] = location
    if code:
        issue["code"] = code
    return issue


def integrity_response(issues: List[Dict[str, Any]], metrics: Dict[str, Any]) -> Dict[str, Any]:
    """Report of a tree integrity check; ``ok`` unless an issue has error severity."""
    has_errors = any(issue["severity"] == "error" for issue in issues)
    status = "error" if has_errors else ("warning" if issues else "ok")
    return {
        "ok": not has_errors,
        "data": {"status": status, "issues": issues, "metrics": metrics},
    }
