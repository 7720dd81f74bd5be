from typing import List, Optional


NOT_CONFIGURED = "not_configured"
NETWORK_FAILURE = "network_failure"
PARSE_FAILURE = "parse_failure"
NO_MEANINGFUL_DATA = "no_meaningful_data"
ALL_SOURCES_EXHAUSTED = "all_sources_exhausted"


class FetchError(Exception):
    kind = "fetch_error"
    retryable = False

    def __init__(self, message: str, source: str = "") -> None:
        super().__init__(message)
        self.message = message
        self.source = source

    def __str__(self) -> str:
        if self.source:
            return f"[{self.source}] {self.message}"
        return self.message


class NotConfigured(FetchError):
    kind = NOT_CONFIGURED


class NetworkFailure(FetchError):
    kind = NETWORK_FAILURE
    retryable = True


class ParseFailure(FetchError):
    kind = PARSE_FAILURE


class NoMeaningfulData(FetchError):
    kind = NO_MEANINGFUL_DATA


class AllSourcesExhausted(Exception):
    kind = ALL_SOURCES_EXHAUSTED

    def __init__(self, company: str, failures: Optional[List[FetchError]] = None) -> None:
        self.company = company
        self.failures = list(failures or [])
        detail = "; ".join(str(f) for f in self.failures) or "no source attempted"
        super().__init__(f"All fallback steps failed for {company}: {detail}")
