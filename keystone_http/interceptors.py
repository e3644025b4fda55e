"""
Keystone HTTP Interceptors

Ordered request and response steps applied around every transport call.
Steps may be synchronous or asynchronous.
"""

import inspect
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, List, Union

from .types import PreparedRequest, TokenStorage, TransportResponse


class RequestStep(ABC):
    """Transforms a request before it is sent."""

    @abstractmethod
    def process_request(
        self, request: PreparedRequest
    ) -> Union[PreparedRequest, Awaitable[PreparedRequest]]:
        ...


class ResponseStep(ABC):
    """Transforms a raw response before its status is interpreted."""

    @abstractmethod
    def process_response(
        self, response: TransportResponse
    ) -> Union[TransportResponse, Awaitable[TransportResponse]]:
        ...


RequestHook = Callable[[PreparedRequest], Any]
ResponseHook = Callable[[TransportResponse], Any]


class FunctionRequestStep(RequestStep):
    """Adapts a plain callable to RequestStep."""

    def __init__(self, func: RequestHook) -> None:
        self._func = func

    def process_request(self, request: PreparedRequest) -> Any:
        return self._func(request)


class FunctionResponseStep(ResponseStep):
    """Adapts a plain callable to ResponseStep."""

    def __init__(self, func: ResponseHook) -> None:
        self._func = func

    def process_response(self, response: TransportResponse) -> Any:
        return self._func(response)


class AuthInterceptor(RequestStep):
    """Attaches the stored access token to requests that require auth."""

    def __init__(self, storage: TokenStorage) -> None:
        self._storage = storage

    def process_request(self, request: PreparedRequest) -> PreparedRequest:
        if not request.spec.requires_auth:
            return request
        tokens = self._storage.get_tokens()
        if tokens is None or not tokens.access_token:
            # Sent unauthenticated; a 401 will route through refresh
            return request
        return request.with_header("Authorization", f"Bearer {tokens.access_token}")


class InterceptorChain:
    """Left-to-right fold of request steps and of response steps."""

    def __init__(self) -> None:
        self._request_steps: List[RequestStep] = []
        self._response_steps: List[ResponseStep] = []

    @property
    def request_steps(self) -> List[RequestStep]:
        return list(self._request_steps)

    @property
    def response_steps(self) -> List[ResponseStep]:
        return list(self._response_steps)

    def add_request_step(self, step: Union[RequestStep, RequestHook]) -> RequestStep:
        if not isinstance(step, RequestStep):
            step = FunctionRequestStep(step)
        self._request_steps.append(step)
        return step

    def add_response_step(self, step: Union[ResponseStep, ResponseHook]) -> ResponseStep:
        if not isinstance(step, ResponseStep):
            step = FunctionResponseStep(step)
        self._response_steps.append(step)
        return step

    async def run_request_chain(self, request: PreparedRequest) -> PreparedRequest:
        for step in self._request_steps:
            result = step.process_request(request)
            if inspect.isawaitable(result):
                result = await result
            if not isinstance(result, PreparedRequest):
                raise TypeError(
                    f"{type(step).__name__} returned {type(result).__name__}, "
                    "expected PreparedRequest"
                )
            request = result
        return request

    async def run_response_chain(self, response: TransportResponse) -> TransportResponse:
        for step in self._response_steps:
            result = step.process_response(response)
            if inspect.isawaitable(result):
                result = await result
            if not isinstance(result, TransportResponse):
                raise TypeError(
                    f"{type(step).__name__} returned {type(result).__name__}, "
                    "expected TransportResponse"
                )
            response = result
        return response
