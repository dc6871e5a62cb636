from fastapi import Request

# Headers that may carry the caller's credentials for the target API, in priority order.
CANDIDATE_AUTH_HEADER_KEYS = [
    "authorization",
    "x-api-token",
]


def get_auth_token_from_request(req: Request) -> str | None:
    for key in CANDIDATE_AUTH_HEADER_KEYS:
        value = req.headers.get(key)
        if value:
            return value
    return None
