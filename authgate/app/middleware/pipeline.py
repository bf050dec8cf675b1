"""
middleware/pipeline.py — explicit, ordered request filters.

FilterChain runs its filters in list order before dispatch and in reverse
order after the handler returns:

    chain = FilterChain([TokenRefreshFilter()])
    chain.init_app(app)

before_request(ctx) may return a Response to short-circuit the request; the
remaining filters and the view are skipped. after_request(ctx, response) runs
only for filters whose before_request ran, and always runs, including for
error responses produced by the global error handlers.
"""

from __future__ import annotations

from typing import Iterable, List, Optional

from flask import Flask, Response, g, request

from authgate.app.middleware.context import RequestContext


class RequestFilter:
    """Base filter; both hooks are no-ops."""

    name = "filter"

    def before_request(self, ctx: RequestContext) -> Optional[Response]:
        return None

    def after_request(self, ctx: RequestContext, response: Response) -> Response:
        return response


class FilterChain:

    def __init__(self, filters: Iterable[RequestFilter] = ()) -> None:
        self._filters: List[RequestFilter] = list(filters)

    @property
    def filters(self) -> List[RequestFilter]:
        return list(self._filters)

    def add(self, request_filter: RequestFilter) -> None:
        self._filters.append(request_filter)

    def init_app(self, app: Flask) -> None:
        app.before_request(self._run_before)
        app.after_request(self._run_after)

    def _run_before(self) -> Optional[Response]:
        ctx = RequestContext.from_request(request)
        g.auth = ctx
        g.auth_filters_ran = []
        for request_filter in self._filters:
            g.auth_filters_ran.append(request_filter)
            response = request_filter.before_request(ctx)
            if response is not None:
                return response
        return None

    def _run_after(self, response: Response) -> Response:
        ctx = g.get("auth")
        ran = g.get("auth_filters_ran") or []
        if ctx is None:
            return response
        for request_filter in reversed(ran):
            response = request_filter.after_request(ctx, response)
        return response
