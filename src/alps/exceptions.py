class AlpsError(Exception):
    pass


class ValidationError(AlpsError):
    pass


class TokenConfigurationError(ValidationError):
    pass


class AccessTokenNotFound(AlpsError):
    token_id: str

    def __init__(self, token_id: str):
        self.token_id = token_id
        super().__init__(f"Access token {token_id} not found")


class DecryptionError(AlpsError):
    pass


class GitHubAPIError(AlpsError):
    status_code: int | None

    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message)


class GitHubAuthenticationError(GitHubAPIError):
    pass


class BuildNotFound(AlpsError):
    build_id: str

    def __init__(self, build_id: str):
        self.build_id = build_id
        super().__init__(f"Build {build_id} not found")
