"""PostgREST client for the hosted inventory database."""

from typing import List, Dict, Any, Optional, Sequence, Tuple
import httpx

from .base_client import BaseClient
from ..utils.config import get_config
from ..utils.exceptions import StoreAPIError, ConfigurationError

OBJECT_MEDIA_TYPE = "application/vnd.pgrst.object+json"

# Characters that carry meaning inside a PostgREST logic tree
_RESERVED_CHARS = set(',.:()"')


def _format_value(value: Any) -> str:
    """Render a Python value as a PostgREST filter operand."""
    if isinstance(value, bool):
        return "true" if value else "false"
    if value is None:
        return "null"
    return str(value)


def _quote(value: str) -> str:
    """Double-quote an operand used inside ``or=(...)`` if it contains reserved characters."""
    if any(ch in _RESERVED_CHARS for ch in value):
        escaped = value.replace("\\", "\\\\").replace('"', '\\"')
        return f'"{escaped}"'
    return value


# ---------------------------------------------------------------------------
# Query builder
# ---------------------------------------------------------------------------

class TableQuery:
    """Single-use request builder scoped to one table.

    Every method returns the builder so calls can be chained::

        client.table("inventory_items").select().eq("id", item_id).single().execute()
    """

    def __init__(self, client: "StoreClient", table: str):
        self._client = client
        self.table = table
        self.method = "GET"
        self.params: List[Tuple[str, str]] = []
        self.body: Optional[Any] = None
        self.headers: Dict[str, str] = {}

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def select(self, columns: str = "*") -> "TableQuery":
        self.params.append(("select", columns))
        return self

    def insert(self, rows: Any) -> "TableQuery":
        """Insert one row (dict) or many rows (list), returning the inserted rows."""
        self.method = "POST"
        self.body = rows
        self.headers["Prefer"] = "return=representation"
        return self

    def update(self, values: Dict[str, Any]) -> "TableQuery":
        """Update the rows matched by the filters, returning the updated rows."""
        self.method = "PATCH"
        self.body = values
        self.headers["Prefer"] = "return=representation"
        return self

    def delete(self) -> "TableQuery":
        self.method = "DELETE"
        return self

    # ------------------------------------------------------------------
    # Filters and modifiers
    # ------------------------------------------------------------------

    def eq(self, column: str, value: Any) -> "TableQuery":
        self.params.append((column, f"eq.{_format_value(value)}"))
        return self

    def gte(self, column: str, value: Any) -> "TableQuery":
        self.params.append((column, f"gte.{_format_value(value)}"))
        return self

    def lte(self, column: str, value: Any) -> "TableQuery":
        self.params.append((column, f"lte.{_format_value(value)}"))
        return self

    def ilike_any(self, columns: Sequence[str], term: str) -> "TableQuery":
        """Case-insensitive substring match of *term* against any of *columns*."""
        pattern = _quote(f"*{term}*")
        conditions = ",".join(f"{column}.ilike.{pattern}" for column in columns)
        self.params.append(("or", f"({conditions})"))
        return self

    def order(self, column: str, ascending: bool = True) -> "TableQuery":
        direction = "asc" if ascending else "desc"
        self.params.append(("order", f"{column}.{direction}"))
        return self

    def limit(self, count: int) -> "TableQuery":
        self.params.append(("limit", str(count)))
        return self

    def range(self, start: int, end: int) -> "TableQuery":
        """Restrict the result to rows ``start``..``end`` (both inclusive)."""
        self.params.append(("offset", str(start)))
        self.params.append(("limit", str(end - start + 1)))
        return self

    def single(self) -> "TableQuery":
        """Expect exactly one row; the store answers ``PGRST116`` otherwise."""
        self.headers["Accept"] = OBJECT_MEDIA_TYPE
        return self

    def execute(self) -> Any:
        return self._client.execute(self)


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------

class StoreClient(BaseClient):
    """Client for the hosted database's PostgREST endpoint."""

    def __init__(
        self,
        url: Optional[str] = None,
        key: Optional[str] = None,
        transport: Optional[httpx.BaseTransport] = None
    ):
        """
        Initialize the store client.

        Args:
            url: Project URL; defaults to ``SUPABASE_URL``
            key: API key; defaults to ``SUPABASE_KEY``
            transport: Optional httpx transport, used by tests

        Raises:
            ConfigurationError: If the URL or key is missing
        """
        config = get_config()
        url = url if url is not None else config.env.supabase_url
        key = key if key is not None else config.env.supabase_key

        if not url or not url.strip() or not key or not key.strip():
            raise ConfigurationError(
                "Database configuration missing. Please check your environment variables."
            )

        if not url.startswith("https://") and not url.startswith("http://"):
            url = f"https://{url}"

        self.project_url = url.rstrip("/")
        self.schema = config.store.schema_name

        headers = {
            "apikey": key,
            "Authorization": f"Bearer {key}"
        }

        super().__init__(
            base_url=f"{self.project_url}{config.store.rest_path}",
            headers=headers,
            transport=transport
        )

    def table(self, name: str) -> TableQuery:
        """Start a query against *name*."""
        return TableQuery(self, name)

    def execute(self, query: TableQuery) -> Any:
        """
        Send a built query to the store.

        Returns:
            Decoded JSON body (list of rows, a single row, or None when the
            store returns no content).

        Raises:
            StoreAPIError: On network failure or any HTTP error response.
        """
        headers = dict(query.headers)
        if self.schema != "public":
            profile_header = "Accept-Profile" if query.method == "GET" else "Content-Profile"
            headers[profile_header] = self.schema

        try:
            response = self._make_request_with_retry(
                query.method,
                f"/{query.table}",
                params=query.params,
                json=query.body,
                headers=headers
            )
        except httpx.HTTPError as e:
            raise StoreAPIError(
                f"Network error: {str(e)}",
                details={"error": str(e)}
            )

        if response.status_code >= 400:
            raise self._error_from_response(response)

        if not response.content:
            return None
        return response.json()

    @staticmethod
    def _error_from_response(response: httpx.Response) -> StoreAPIError:
        """Build a ``StoreAPIError`` from a PostgREST error body."""
        try:
            body = response.json()
        except ValueError:
            return StoreAPIError(
                f"HTTP {response.status_code}: {response.text}",
                status_code=response.status_code,
                details={"response": response.text}
            )

        if not isinstance(body, dict):
            body = {}

        return StoreAPIError(
            body.get("message") or f"HTTP {response.status_code}",
            code=body.get("code"),
            status_code=response.status_code,
            details={"details": body.get("details"), "hint": body.get("hint")}
        )
