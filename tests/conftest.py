import io
import json
import os
import sys
from pathlib import Path
from typing import Any, Callable, Dict, List

ROOT = Path(__file__).resolve().parents[1]

if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("PIPELINE_TIMEZONE", "America/Sao_Paulo")
os.environ["JSON_LOG_FILE"] = ""

import httpx
import pytest
import pytest_asyncio
import sqlalchemy as sa

from freight_sync.common.db import dispose_engines
from freight_sync.common.db_tables import companies, company_platforms, metadata, platforms
from freight_sync.common.http_client import HttpClient
from freight_sync.common.json_logger import JsonLogger

BASE_URL = "https://allpost.test/api/v1"


@pytest.fixture
def sqlite_url(tmp_path: Path) -> str:
    database_url = f"sqlite+aiosqlite:///{tmp_path / 'freight.db'}"
    engine = sa.create_engine(database_url.replace("+aiosqlite", ""))
    metadata.create_all(engine)
    engine.dispose()
    return database_url


@pytest_asyncio.fixture
async def database_url(sqlite_url: str):
    yield sqlite_url
    await dispose_engines()


def sync_engine(database_url: str) -> sa.Engine:
    return sa.create_engine(database_url.replace("+aiosqlite", ""))


@pytest.fixture
def seed_tenant() -> Callable[..., int]:
    """Insert a company with AllPost installed; returns the platform id."""

    def _seed(
        database_url: str,
        *,
        company_id: int = 1,
        config: Dict[str, Any] | None = None,
    ) -> int:
        engine = sync_engine(database_url)
        with engine.begin() as connection:
            connection.execute(sa.insert(companies).values(id=company_id, name=f"Company {company_id}"))
            platform_id = connection.execute(
                sa.select(platforms.c.id).where(platforms.c.slug == "allpost")
            ).scalar_one_or_none()
            if platform_id is None:
                platform_id = connection.execute(
                    sa.insert(platforms).values(type="freight", slug="allpost", name="AllPost")
                ).inserted_primary_key[0]
            connection.execute(
                sa.insert(company_platforms).values(
                    company_id=company_id,
                    platform_id=platform_id,
                    config=config if config is not None else {"token_api": "Bearer api-token", "token_cotacao": "quote-token"},
                )
            )
        engine.dispose()
        return int(platform_id)

    return _seed


@pytest.fixture
def log_stream() -> io.StringIO:
    return io.StringIO()


@pytest.fixture
def logger(log_stream: io.StringIO) -> JsonLogger:
    json_logger = JsonLogger(run_id="test_run", stream=log_stream, log_file_path=None)
    yield json_logger
    json_logger.close()


def read_events(stream: io.StringIO) -> List[Dict[str, Any]]:
    return [json.loads(line) for line in stream.getvalue().splitlines() if line.strip()]


class FakeAllPost:
    """In-memory stand-in for the vendor API, served through ``httpx.MockTransport``."""

    def __init__(self) -> None:
        self.order_pages: List[List[Any]] = []
        self.queue_pages: List[List[Any]] = []
        self.quotes: Dict[str, Any] = {}
        self.quote_errors: Dict[str, httpx.Response] = {}
        self.requests: List[httpx.Request] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        if path.endswith("/pedidos/"):
            page = int(request.url.params["pagina"])
            rows = self.order_pages[page - 1] if page <= len(self.order_pages) else []
            return httpx.Response(200, json=rows)
        if path.endswith("/logCotacaoFila"):
            page = int(request.url.params["page"])
            rows = self.queue_pages[page - 1] if page <= len(self.queue_pages) else []
            return httpx.Response(200, json=rows)
        if "/cotacao/" in path:
            quote_id = path.rsplit("/", 1)[-1]
            if quote_id in self.quote_errors:
                return self.quote_errors[quote_id]
            if quote_id in self.quotes:
                return httpx.Response(200, json=self.quotes[quote_id])
            return httpx.Response(404, json={"message": "Cotação não encontrada"})
        return httpx.Response(404, text="not found")

    def requests_to(self, fragment: str) -> List[httpx.Request]:
        return [request for request in self.requests if fragment in request.url.path]

    def client(self, logger: JsonLogger | None = None) -> HttpClient:
        async def _no_sleep(_: float) -> None:
            return None

        return HttpClient(logger=logger, transport=httpx.MockTransport(self.handler), sleeper=_no_sleep)


@pytest.fixture
def allpost() -> FakeAllPost:
    return FakeAllPost()


def quote_payload(quote_id: str, *, options: List[Dict[str, Any]] | None = None, products: List[Dict[str, Any]] | None = None) -> Dict[str, Any]:
    return {
        "retorno": {
            "idCotacao": quote_id,
            "dataCotacao": "2024-03-10T15:30:00-03:00",
            "plataforma": "vtex",
            "idCotacaoExterno": f"ext-{quote_id}",
            "destino": {"cep": "01310100", "uf": "SP", "ufExtenso": "São Paulo", "regiaoUf": "Capital", "regiaoPais": "Sudeste"},
        },
        "dadosEntrada": {
            "canal": "site",
            "nomeLoja": "Loja Centro",
            "carrinho": {
                "valorNF": "199.90",
                "totalPeso": 2.5,
                "totalCubagem": "0.012",
                "totalVolumes": 2,
                "produto": products
                if products is not None
                else [{"sku": "253-1657", "idSku": "1657", "qt": 1, "preco": "99.95"}],
            },
        },
        "opcoesEntrega": options
        if options is not None
        else [
            {
                "freteCobrar": "25.50",
                "freteReal": 20,
                "prazoEntregaTotal": 6,
                "possuiEstoque": "sim",
                "dadosFrete": {"transportadoraNome": "Rapida", "metodoEnvioNome": "Expresso"},
                "prazoEntrega": {"prazoTransportadora": 5},
            },
            {
                "freteCobrar": 15,
                "freteReal": 12,
                "prazoEntregaTotal": 10,
                "dadosFrete": {"transportadoraNome": "Economica"},
                "prazoEntrega": {"prazoTransportadora": 9},
            },
        ],
    }
