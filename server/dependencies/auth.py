import secrets

from fastapi import Header, HTTPException, Request


async def verify_api_key(request: Request, x_api_key: str = Header(...)) -> None:
    """Compare the X-Api-Key header with API_SERVER_API_KEY.

    Raises:
        HTTPException: 401 if the key does not match, 500 if no key is configured.
    """
    helper_config = request.app.state.helper_config
    try:
        expected_key = helper_config.get_string_val("API_SERVER_API_KEY")
    except ValueError:
        request.app.state.logging.error("API_SERVER_API_KEY is not configured, rejecting request.")
        raise HTTPException(status_code=500, detail="Server API key not configured")
    if not secrets.compare_digest(x_api_key.encode(), expected_key.encode()):
        raise HTTPException(status_code=401, detail="Invalid or missing API key")
