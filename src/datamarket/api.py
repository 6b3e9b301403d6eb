"""
datamarket/api.py

REST API server over the MarketplaceEngine.

Provides HTTP endpoints for quotes, reconciled purchases, revenue
analytics, dashboards and the bounty lifecycle. Engine errors map to
status codes:

    InvalidAmount / ValueError          400
    Rejected                            409
    DatasetUnresolvable / PayloadError  502
    Unavailable                         503 (body carries outcome_unknown)
"""

import json
import logging
import time
import trio
from typing import Any, Callable, Dict, List, Optional, Tuple
from dataclasses import dataclass, field
from urllib.parse import parse_qs, urlparse

from .config import CURRENCY_SYMBOL, DEFAULT_API_HOST, DEFAULT_API_PORT, VERSION
from .engine import MarketplaceEngine
from .errors import DatasetUnresolvable, PayloadError, Rejected, Unavailable
from .session import Session

logger = logging.getLogger("datamarket.api")


@dataclass
class Request:
    """HTTP request representation."""
    method: str
    path: str
    query: Dict[str, List[str]]
    headers: Dict[str, str]
    body: bytes
    path_params: Dict[str, str] = field(default_factory=dict)


@dataclass
class Response:
    """HTTP response representation."""
    status: int
    headers: Dict[str, str]
    body: bytes

    @classmethod
    def json(cls, data: Any, status: int = 200) -> "Response":
        """Create JSON response."""
        body = json.dumps(data, indent=2).encode("utf-8")
        return cls(
            status=status,
            headers={"Content-Type": "application/json"},
            body=body,
        )

    @classmethod
    def text(cls, text: str, status: int = 200, content_type: str = "text/plain") -> "Response":
        """Create text response."""
        return cls(
            status=status,
            headers={"Content-Type": content_type},
            body=text.encode("utf-8"),
        )

    @classmethod
    def error(cls, message: str, status: int = 400, **extra: Any) -> "Response":
        """Create error response."""
        return cls.json({"error": message, **extra}, status=status)


STATUS_TEXT = {
    200: "OK",
    201: "Created",
    400: "Bad Request",
    404: "Not Found",
    409: "Conflict",
    500: "Internal Server Error",
    502: "Bad Gateway",
    503: "Service Unavailable",
}


def _query_param(request: Request, name: str, default: Optional[str] = None) -> Optional[str]:
    values = request.query.get(name, [])
    return values[0] if values else default


def _int_value(value: Any, name: str) -> int:
    if isinstance(value, bool):
        raise ValueError(f"{name} must be an integer")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValueError(f"{name} must be an integer, got {value!r}")


def _json_body(request: Request, *required: str) -> Dict[str, Any]:
    if not request.body:
        raise ValueError("Request body required")
    try:
        body = json.loads(request.body)
    except json.JSONDecodeError:
        raise ValueError("Invalid JSON")
    if not isinstance(body, dict):
        raise ValueError("Request body must be a JSON object")
    missing = [name for name in required if body.get(name) in (None, "")]
    if missing:
        raise ValueError(f"Missing field(s): {', '.join(missing)}")
    return body


class EngineAPI:
    """
    REST API server for datamarket.

    Usage:
        from datamarket import MarketplaceEngine
        from datamarket.api import EngineAPI

        engine = MarketplaceEngine(ledger, cache)
        api = EngineAPI(engine, host="0.0.0.0", port=8645)
        await api.start()

        # API available at http://localhost:8645
    """

    def __init__(
        self,
        engine: MarketplaceEngine,
        host: str = DEFAULT_API_HOST,
        port: int = DEFAULT_API_PORT,
        clock: Callable[[], float] = time.time,
    ):
        """
        Initialize REST API server.

        Args:
            engine: Engine to expose
            host: Host to bind to (default: localhost)
            port: Port to listen on
            clock: Time source given to request sessions
        """
        self.engine = engine
        self.host = host
        self.port = port
        self.clock = clock

        # Server state
        self._running = False
        self._start_time = time.time()

        # Route handlers
        self._routes: Dict[Tuple[str, str], Callable] = {
            ("GET", "/"): self._handle_root,
            ("GET", "/health"): self._handle_health,
            ("GET", "/quote"): self._handle_quote,
            ("GET", "/datasets"): self._handle_datasets,
            ("GET", "/accounts/{account}/purchases"): self._handle_purchases,
            ("DELETE", "/accounts/{account}/purchases"): self._handle_clear_purchases,
            ("GET", "/accounts/{account}/revenue/trend"): self._handle_trend,
            ("GET", "/accounts/{account}/revenue/analytics"): self._handle_analytics,
            ("GET", "/accounts/{account}/dashboard"): self._handle_dashboard,
            ("GET", "/bounties"): self._handle_list_bounties,
            ("POST", "/bounties"): self._handle_create_bounty,
            ("POST", "/bounties/{bounty_id}/submissions"): self._handle_submit,
            ("POST", "/bounties/{bounty_id}/approve"): self._handle_approve,
            ("POST", "/bounties/{bounty_id}/cancel"): self._handle_cancel,
            ("GET", "/metrics"): self._handle_metrics,
        }

    async def start(self) -> None:
        """Start the API server."""
        if self._running:
            logger.warning("API server already running")
            return

        self._running = True
        logger.info(f"Starting REST API server on {self.host}:{self.port}")

        try:
            await trio.serve_tcp(
                self._handle_connection,
                self.port,
                host=self.host,
            )
        except OSError as e:
            logger.error(f"API server error: {e}")
            self._running = False
            raise

    async def stop(self) -> None:
        """Stop the API server."""
        self._running = False
        logger.info("REST API server stopped")

    async def _handle_connection(self, stream: trio.SocketStream) -> None:
        """Handle incoming TCP connection."""
        try:
            request = await self._read_request(stream)
            if not request:
                return
            response = await self._route_request(request)
            await self._send_response(stream, response)
        except (OSError, trio.BrokenResourceError) as e:
            logger.error(f"Connection error: {e}")
        finally:
            await stream.aclose()

    async def _read_request(self, stream: trio.SocketStream) -> Optional[Request]:
        """Read and parse HTTP request."""
        try:
            # Read request line and headers
            data = b""
            while b"\r\n\r\n" not in data:
                chunk = await stream.receive_some(4096)
                if not chunk:
                    return None
                data += chunk

            header_end = data.index(b"\r\n\r\n")
            header_data = data[:header_end].decode("utf-8")
            body = data[header_end + 4:]

            lines = header_data.split("\r\n")
            request_line = lines[0].split(" ")
            method = request_line[0]
            path_with_query = request_line[1] if len(request_line) > 1 else "/"

            parsed = urlparse(path_with_query)
            headers = {}
            for line in lines[1:]:
                if ":" in line:
                    key, value = line.split(":", 1)
                    headers[key.strip().lower()] = value.strip()

            # Read remaining body if Content-Length specified
            content_length = int(headers.get("content-length", 0))
            while len(body) < content_length:
                chunk = await stream.receive_some(4096)
                if not chunk:
                    break
                body += chunk

            return Request(
                method=method,
                path=parsed.path,
                query=parse_qs(parsed.query),
                headers=headers,
                body=body[:content_length] if content_length else body,
            )

        except (UnicodeDecodeError, ValueError, trio.BrokenResourceError) as e:
            logger.error(f"Error reading request: {e}")
            return None

    async def _send_response(self, stream: trio.SocketStream, response: Response) -> None:
        """Send HTTP response."""
        lines = [f"HTTP/1.1 {response.status} {STATUS_TEXT.get(response.status, 'Unknown')}"]

        response.headers["Content-Length"] = str(len(response.body))
        response.headers["Connection"] = "close"
        response.headers["Server"] = f"datamarket/{VERSION}"

        for key, value in response.headers.items():
            lines.append(f"{key}: {value}")

        lines.append("")
        header_bytes = "\r\n".join(lines).encode("utf-8") + b"\r\n"

        await stream.send_all(header_bytes + response.body)

    async def _route_request(self, request: Request) -> Response:
        """Route request to appropriate handler."""
        handler = self._routes.get((request.method, request.path))
        if handler is None:
            for (method, pattern), candidate in self._routes.items():
                if method != request.method:
                    continue
                match, params = self._match_path(pattern, request.path)
                if match:
                    request.path_params = params
                    handler = candidate
                    break

        if handler is None:
            return Response.error("Not Found", status=404)
        return await self._dispatch(handler, request)

    async def _dispatch(self, handler: Callable, request: Request) -> Response:
        """Run a handler, mapping engine errors to HTTP statuses."""
        try:
            return await handler(request)
        except Rejected as e:
            return Response.error(str(e), status=409, reason=e.reason)
        except Unavailable as e:
            return Response.error(str(e), status=503, outcome_unknown=e.outcome_unknown)
        except (DatasetUnresolvable, PayloadError) as e:
            logger.error(f"{request.method} {request.path} failed: {e}")
            return Response.error(str(e), status=502)
        except ValueError as e:
            return Response.error(str(e), status=400)
        except Exception as e:
            logger.exception(f"{request.method} {request.path} crashed: {e}")
            return Response.error("Internal Server Error", status=500)

    def _match_path(self, pattern: str, path: str) -> Tuple[bool, Dict[str, str]]:
        """Match path against pattern with parameters."""
        pattern_parts = pattern.split("/")
        path_parts = path.split("/")

        if len(pattern_parts) != len(path_parts):
            return False, {}

        params = {}
        for p_part, path_part in zip(pattern_parts, path_parts):
            if p_part.startswith("{") and p_part.endswith("}"):
                params[p_part[1:-1]] = path_part
            elif p_part != path_part:
                return False, {}

        return True, params

    def _session(self, account: str) -> Session:
        return Session(account=account, clock=self.clock)

    def _days(self, request: Request) -> int:
        return _int_value(_query_param(request, "days", "30"), "days")

    # ========== Route Handlers ==========

    async def _handle_root(self, request: Request) -> Response:
        return Response.json({
            "name": "datamarket",
            "version": VERSION,
            "currency": CURRENCY_SYMBOL,
            "endpoints": list(f"{m} {p}" for (m, p) in self._routes.keys()),
        })

    async def _handle_health(self, request: Request) -> Response:
        """Health check: healthy when the ledger head can be read."""
        try:
            head = await self.engine.ledger.get_block_number()
        except Unavailable as e:
            return Response.json({
                "status": "unhealthy",
                "error": str(e),
                "uptime_seconds": time.time() - self._start_time,
            }, status=503)
        return Response.json({
            "status": "healthy",
            "block_number": head,
            "uptime_seconds": time.time() - self._start_time,
        })

    async def _handle_quote(self, request: Request) -> Response:
        price = _query_param(request, "price")
        if price is None:
            raise ValueError("price is required")
        return Response.json(self.engine.quote_purchase(price).to_dict())

    async def _handle_datasets(self, request: Request) -> Response:
        include_inactive = _query_param(request, "include_inactive", "false").lower() == "true"
        datasets = await self.engine.list_datasets(
            category=_query_param(request, "category"),
            include_inactive=include_inactive,
        )
        return Response.json({
            "count": len(datasets),
            "datasets": [d.to_dict() for d in datasets],
        })

    async def _handle_purchases(self, request: Request) -> Response:
        account = request.path_params["account"]
        views = await self.engine.reconcile_purchases(self._session(account))
        return Response.json({
            "account": account,
            "count": len(views),
            "purchases": [v.to_dict() for v in views],
        })

    async def _handle_clear_purchases(self, request: Request) -> Response:
        account = request.path_params["account"]
        removed = await self.engine.clear_purchases(self._session(account))
        return Response.json({"account": account, "removed": removed})

    async def _handle_trend(self, request: Request) -> Response:
        account = request.path_params["account"]
        days = self._days(request)
        points = await self.engine.revenue_trend(self._session(account), days)
        return Response.json({
            "account": account,
            "days": days,
            "trend": [p.to_dict() for p in points],
        })

    async def _handle_analytics(self, request: Request) -> Response:
        account = request.path_params["account"]
        analytics = await self.engine.period_analytics(self._session(account), self._days(request))
        return Response.json({"account": account, **analytics.to_dict()})

    async def _handle_dashboard(self, request: Request) -> Response:
        session = self._session(request.path_params["account"])
        dashboard = await self.engine.dashboard(session)
        categories = await self.engine.category_breakdown(session)
        return Response.json({
            **dashboard.to_dict(),
            "categories": [c.to_dict() for c in categories],
        })

    async def _handle_list_bounties(self, request: Request) -> Response:
        bounties = await self.engine.list_bounties(
            status_filter=_query_param(request, "status", "all"),
            sort=_query_param(request, "sort", "newest"),
        )
        return Response.json({
            "count": len(bounties),
            "bounties": [b.to_dict() for b in bounties],
        })

    async def _handle_create_bounty(self, request: Request) -> Response:
        body = _json_body(request, "creator", "title", "deadline", "reward")
        bounty = await self.engine.create_bounty(
            self._session(body["creator"]),
            title=body["title"],
            description=body.get("description", ""),
            metadata_hash=body.get("metadataHash", ""),
            category=body.get("category", ""),
            deadline=_int_value(body["deadline"], "deadline"),
            reward=str(body["reward"]),
        )
        return Response.json(bounty.to_dict(), status=201)

    async def _handle_submit(self, request: Request) -> Response:
        bounty_id = _int_value(request.path_params["bounty_id"], "bounty_id")
        body = _json_body(request, "submitter", "contentHash")
        submission = await self.engine.submit_to_bounty(
            self._session(body["submitter"]),
            bounty_id,
            content_hash=body["contentHash"],
            description=body.get("description", ""),
        )
        return Response.json(submission.to_dict(), status=201)

    async def _handle_approve(self, request: Request) -> Response:
        bounty_id = _int_value(request.path_params["bounty_id"], "bounty_id")
        body = _json_body(request, "caller")
        settlement = await self.engine.approve_bounty(
            self._session(body["caller"]),
            bounty_id,
            _int_value(body.get("submissionIndex", 0), "submissionIndex"),
        )
        return Response.json(settlement.to_dict())

    async def _handle_cancel(self, request: Request) -> Response:
        bounty_id = _int_value(request.path_params["bounty_id"], "bounty_id")
        body = _json_body(request, "caller")
        refund = await self.engine.cancel_bounty(self._session(body["caller"]), bounty_id)
        return Response.json(refund.to_dict())

    async def _handle_metrics(self, request: Request) -> Response:
        """Handle Prometheus metrics endpoint."""
        return Response.text(
            self.engine.metrics.collect(),
            content_type="text/plain; version=0.0.4; charset=utf-8",
        )
