from __future__ import annotations


class AnalyzerError(Exception):
    code = "internal-error"
    status_code = 500
    fatal = True
    default_message = "Internal error"

    def __init__(self, message: str = ""):
        super().__init__(message or self.default_message)

    @property
    def message(self) -> str:
        return str(self)


class CredentialUnavailable(AnalyzerError):
    code = "no-credential"
    status_code = 401
    default_message = "Authentication required. Please set up API credentials."


class FetchTimeout(AnalyzerError):
    code = "fetch-timeout"
    default_message = "Fetch timeout"


class FetchFailed(AnalyzerError):
    code = "fetch-error"
    default_message = "Failed to fetch trending products"


class FetchEmpty(AnalyzerError):
    code = "fetch-empty"
    status_code = 404
    default_message = "No trending products found"


class AnalysisTimeout(AnalyzerError):
    code = "analysis-timeout"
    fatal = False
    default_message = "Analysis timeout"


class AnalysisFailed(AnalyzerError):
    code = "analysis-failed"
    fatal = False
    default_message = "Analysis failed"
