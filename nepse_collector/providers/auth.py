"""Session token acquisition and de-obfuscation for the NEPSE API.

The prove endpoint hands out a scrambled ``accessToken`` together with five
salts. A small WebAssembly module served by the site turns the salts into five
character offsets; removing the characters at those offsets yields the token
the API actually accepts. Everything that depends on that scheme lives here so
that a change upstream only touches this module.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Callable, Protocol, Sequence

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError
from wasmtime import Engine, Func, FuncType, Instance, Module, Store, Trap, WasmtimeError

from .base import DEFAULT_ACCEPT, AuthError, FetchRequest, HttpTransport

LOGGER = logging.getLogger(__name__)

INDEX_FUNCTIONS: tuple[str, ...] = ("cdx", "rdx", "bdx", "ndx", "mdx")


class IndexComputer(Protocol):
    """Capability computing one splice offset per named routine."""

    def cdx(self, *salts: int) -> int: ...

    def rdx(self, *salts: int) -> int: ...

    def bdx(self, *salts: int) -> int: ...

    def ndx(self, *salts: int) -> int: ...

    def mdx(self, *salts: int) -> int: ...


class ProveResponse(BaseModel):
    """Payload returned by ``/api/authenticate/prove``."""

    access_token: str = Field(alias="accessToken", min_length=1)
    salt1: int
    salt2: int
    salt3: int
    salt4: int
    salt5: int

    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class AuthHeaders(BaseModel):
    """Immutable snapshot of the headers every authenticated call carries."""

    token: str
    accept: str = DEFAULT_ACCEPT

    model_config = ConfigDict(frozen=True)

    @property
    def authorization(self) -> str:
        return f"Salter {self.token}"

    def as_dict(self) -> dict[str, str]:
        return {"Authorization": self.authorization, "Accept": self.accept}


@dataclass(frozen=True, slots=True)
class SpliceIndices:
    """Five character offsets into the scrambled token."""

    first: int
    second: int
    third: int
    fourth: int
    fifth: int

    def ordered(self) -> list[int]:
        return sorted((self.first, self.second, self.third, self.fourth, self.fifth))


def compute_splice_indices(computer: IndexComputer, salts: ProveResponse) -> SpliceIndices:
    """Run the five index routines with their expected argument orders."""

    s1, s2, s3, s4, s5 = salts.salt1, salts.salt2, salts.salt3, salts.salt4, salts.salt5
    return SpliceIndices(
        first=int(computer.cdx(s1, s2, s3, s4, s5)),
        second=int(computer.rdx(s1, s2, s4, s3, s5)),
        third=int(computer.bdx(s1, s2, s4, s3, s5)),
        fourth=int(computer.ndx(s1, s2, s4, s3, s5)),
        fifth=int(computer.mdx(s1, s2, s4, s3, s5)),
    )


def descramble_token(token: str, indices: SpliceIndices) -> str:
    """Remove the characters at each splice offset, keeping everything else in order."""

    offsets = indices.ordered()
    if len(set(offsets)) != len(offsets):
        raise AuthError(f"Splice offsets are not distinct: {offsets}")
    if offsets[0] < 0 or offsets[-1] >= len(token):
        raise AuthError(
            f"Splice offsets {offsets} fall outside a token of length {len(token)}"
        )

    segments: list[str] = []
    cursor = 0
    for offset in offsets:
        segments.append(token[cursor:offset])
        cursor = offset + 1
    segments.append(token[cursor:])
    return "".join(segments)


def _noop_import(func_type: FuncType) -> Callable[..., Any]:
    results = list(func_type.results)

    def _callback(*_: Any) -> Any:
        if not results:
            return None
        if len(results) == 1:
            return 0
        return tuple(0 for _ in results)

    return _callback


class WasmIndexComputer:
    """:class:`IndexComputer` backed by the site's WebAssembly module."""

    def __init__(self, module_source: bytes | str) -> None:
        self._engine = Engine()
        self._store = Store(self._engine)
        try:
            module = Module(self._engine, module_source)
            imports: list[Func] = []
            for item in module.imports:
                if not isinstance(item.type, FuncType):
                    raise AuthError(
                        f"Index module imports unsupported {item.module}.{item.name}"
                    )
                imports.append(Func(self._store, item.type, _noop_import(item.type)))
            instance = Instance(self._store, module, imports)
        except WasmtimeError as exc:
            raise AuthError(f"Unable to instantiate index module: {exc}") from exc

        exports = instance.exports(self._store)
        self._functions: dict[str, Func] = {}
        for name in INDEX_FUNCTIONS:
            try:
                export = exports[name]
            except KeyError as exc:
                raise AuthError(f"Index module does not export {name!r}") from exc
            if not isinstance(export, Func):
                raise AuthError(f"Index module export {name!r} is not a function")
            self._functions[name] = export

    @classmethod
    async def load(cls, transport: HttpTransport, url: str) -> "WasmIndexComputer":
        """Download and instantiate the module published at ``url``."""

        try:
            payload = await transport.get_bytes(url)
        except httpx.HTTPError as exc:
            raise AuthError(f"Unable to download index module from {url}: {exc}") from exc
        LOGGER.debug("Loaded %s byte index module from %s", len(payload), url)
        return cls(payload)

    def _call(self, name: str, salts: Sequence[int]) -> int:
        try:
            value = self._functions[name](self._store, *(int(salt) for salt in salts))
        except (WasmtimeError, Trap) as exc:
            raise AuthError(f"Index routine {name} failed: {exc}") from exc
        return int(value)

    def cdx(self, *salts: int) -> int:
        return self._call("cdx", salts)

    def rdx(self, *salts: int) -> int:
        return self._call("rdx", salts)

    def bdx(self, *salts: int) -> int:
        return self._call("bdx", salts)

    def ndx(self, *salts: int) -> int:
        return self._call("ndx", salts)

    def mdx(self, *salts: int) -> int:
        return self._call("mdx", salts)


class TokenProvider:
    """Single owner of the NEPSE session headers.

    ``refresh`` is the only writer. It always queries the prove endpoint again
    and swaps the held :class:`AuthHeaders` snapshot in one assignment, so
    concurrent readers see either the old or the new headers, never a mix.
    """

    def __init__(
        self,
        transport: HttpTransport,
        index_computer: IndexComputer,
        *,
        prove_url: str,
    ) -> None:
        self._transport = transport
        self._index_computer = index_computer
        self._prove_url = prove_url
        self._headers: AuthHeaders | None = None
        self._lock = asyncio.Lock()
        self.refresh_count = 0

    @property
    def headers(self) -> AuthHeaders:
        current = self._headers
        if current is None:
            raise AuthError("No session token has been acquired yet.")
        return current

    async def acquire(self) -> AuthHeaders:
        current = self._headers
        if current is not None:
            return current
        return await self.refresh()

    async def refresh(self) -> AuthHeaders:
        async with self._lock:
            prove = await self._prove()
            indices = compute_splice_indices(self._index_computer, prove)
            token = descramble_token(prove.access_token, indices)
            headers = AuthHeaders(token=token)
            self._headers = headers
            self.refresh_count += 1
            LOGGER.info("Acquired NEPSE session token (refresh #%s)", self.refresh_count)
            return headers

    async def _prove(self) -> ProveResponse:
        request = FetchRequest(url=self._prove_url, headers={"Accept": DEFAULT_ACCEPT})
        try:
            response = await self._transport.send(request)
        except httpx.HTTPError as exc:
            raise AuthError(f"Prove endpoint unreachable: {exc}") from exc

        body = response.body
        if not isinstance(body, dict) or not body.get("accessToken"):
            raise AuthError(
                "Failed to fetch access token from NEPSE. "
                f"status={response.status_code} detail={str(body)[:200]}"
            )
        try:
            return ProveResponse.model_validate(body)
        except ValidationError as exc:
            raise AuthError(f"Malformed prove response: {exc}") from exc


__all__ = [
    "AuthHeaders",
    "INDEX_FUNCTIONS",
    "IndexComputer",
    "ProveResponse",
    "SpliceIndices",
    "TokenProvider",
    "WasmIndexComputer",
    "compute_splice_indices",
    "descramble_token",
]
