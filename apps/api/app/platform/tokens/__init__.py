from app.platform.tokens.schemes import IssuedToken, TokenKind, TokenSubject, encode_legacy_token
from app.platform.tokens.service import TokenService, token_service

__all__ = [
    "IssuedToken",
    "TokenKind",
    "TokenService",
    "TokenSubject",
    "encode_legacy_token",
    "token_service",
]
