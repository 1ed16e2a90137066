#!/usr/bin/env python3
"""Оценка инвентаря CS:GO: csgo.exchange -> предметы -> цены и иконки из справочной таблицы market_hash_name."""
from __future__ import annotations

import argparse
import json
import logging
import os
import sys
import urllib.parse
from contextlib import contextmanager
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, FrozenSet, Iterable, Iterator, List, Optional, Sequence, Tuple

import cloudscraper
import requests
import yaml
from bs4 import BeautifulSoup
from requests.adapters import HTTPAdapter
from requests.exceptions import RequestException
from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from sqlalchemy import Column, MetaData, Numeric, String, Table as SQLTable, and_, create_engine, select
from sqlalchemy import exc as sa_exc
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.pool import QueuePool
from urllib3.util.retry import Retry

console = Console()

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/125.0.0.0 Safari/537.36"
)

STEAM_ID64_BASE = 76561197960265728
COOKIE_ENV_VAR = "CSGO_EXCHANGE_COOKIE"

STAR = "★"
STATTRAK = "StatTrak™"
SOUVENIR = "Souvenir"
FIELD_SEPARATOR = " | "
VANILLA = "Vanilla"

AGENT_QUALITIES: FrozenSet[str] = frozenset({"distinguished", "exceptional", "superior", "master"})

DEFAULT_CHUNK_SIZE = 200
CENTS = Decimal("0.01")


class ConfigError(RuntimeError):
    """Ошибки конфигурации."""


class InventoryError(RuntimeError):
    reason = "inventory_error"
    retryable = False

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class SourceUnavailable(InventoryError):
    reason = "source_unavailable"


class StoreUnavailable(InventoryError):
    reason = "store_unavailable"
    retryable = True


class NoItemsExtracted(InventoryError):
    reason = "no_items"


class ChunkLookupFailed(InventoryError):
    reason = "chunk_lookup_failed"


class FallbackLookupFailed(InventoryError):
    reason = "fallback_lookup_failed"


class InvalidTradeLink(InventoryError):
    reason = "invalid_trade_link"


@dataclass
class Settings:
    source_url_template: str = "https://csgo.exchange/inventory/{steam_id}/retry/"
    referer_template: str = "https://csgo.exchange/id/{steam_id}"
    cookie: str = ""
    use_cloudscraper: bool = False
    request_timeout: float = 25.0
    verify_tls: bool = True
    proxies: Dict[str, str] = field(default_factory=dict)
    database_url: str = "sqlite:///prices.db"
    prices_table: str = "skin_prices"
    pool_size: int = 5
    pool_timeout: float = 10.0
    chunk_size: int = DEFAULT_CHUNK_SIZE
    fallback_enabled: bool = True
    include_unworn: bool = False
    fail_on_store_unavailable: bool = True
    currency: str = "USD"


@dataclass(frozen=True)
class RawElement:
    exterior: str = ""
    quality: str = ""
    category: str = ""
    search: str = ""


@dataclass(frozen=True)
class ItemDescriptor:
    name: str
    wear: str
    category_tags: FrozenSet[str]
    is_agent: bool
    is_knife: bool
    is_gloves: bool
    ordinal: int

    @property
    def stattrak(self) -> bool:
        return "stattrak" in self.category_tags

    @property
    def souvenir(self) -> bool:
        return "souvenir" in self.category_tags


@dataclass(frozen=True)
class CatalogRecord:
    canonical_name: str
    price: Decimal
    icon_url: str


@dataclass(frozen=True)
class EnrichedItem:
    display_name: str
    wear: str
    price: Optional[Decimal]
    icon_url: str

    @property
    def found(self) -> bool:
        return self.price is not None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "skin": self.display_name,
            "wear": self.wear,
            "price": f"{self.price:.2f}" if self.price is not None else None,
            "found": self.found,
            "icon_url": self.icon_url,
        }


def expand_env(value: Any) -> Any:
    if isinstance(value, str):
        return os.path.expandvars(value)
    if isinstance(value, dict):
        return {k: expand_env(v) for k, v in value.items()}
    if isinstance(value, list):
        return [expand_env(v) for v in value]
    return value


def load_config(path: Optional[str]) -> Dict[str, Any]:
    if not path:
        return {}
    with open(path, "r", encoding="utf-8") as fh:
        data = yaml.safe_load(fh) or {}
    return expand_env(data)


def parse_optional_bool(value: Any) -> Optional[bool]:
    if value is None:
        return None
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in {"1", "true", "yes", "y", "on"}:
        return True
    if text in {"0", "false", "no", "n", "off"}:
        return False
    raise ConfigError(f"Не удалось интерпретировать логическое значение: {value!r}")


def coerce_decimal(value: Any) -> Optional[Decimal]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, Decimal):
        return value.quantize(CENTS)
    if isinstance(value, (int, float)):
        return Decimal(str(value)).quantize(CENTS)
    if isinstance(value, str):
        cleaned = "".join(ch for ch in value if ch.isdigit() or ch in ",.")
        if not cleaned:
            return None
        if cleaned.count(",") > 1 and "." not in cleaned:
            cleaned = cleaned.replace(",", "")
        elif cleaned.count(",") == 1 and "." not in cleaned:
            cleaned = cleaned.replace(",", ".")
        elif "," in cleaned and "." in cleaned:
            cleaned = cleaned.replace(",", "")
        try:
            return Decimal(cleaned).quantize(CENTS)
        except InvalidOperation:
            return None
    return None


def format_money(value: Optional[Decimal], currency: str) -> str:
    if value is None:
        return "not found"
    formatted = f"{value:,.2f}".replace(",", " ")
    return f"{formatted} {currency}"


def normalize_space(value: Optional[str]) -> str:
    return " ".join((value or "").split())


def candidate_key(name: str) -> str:
    return normalize_space(name).casefold()


def is_vanilla(wear: str) -> bool:
    return not wear or wear.strip().lower() == VANILLA.lower()


def build_descriptor(element: RawElement, ordinal: int) -> Optional[ItemDescriptor]:
    name = normalize_space(urllib.parse.unquote(element.search or ""))
    category = (element.category or "").lower()
    tags = {token for token in category.split() if token}
    if "stattrak" in category:
        tags.add("stattrak")
    if "souvenir" in category:
        tags.add("souvenir")
    starred = name.startswith(STAR)
    if starred:
        name = name[len(STAR):].strip()
    if name.startswith(STATTRAK):
        tags.add("stattrak")
        name = name[len(STATTRAK):].strip()
    if name.startswith(SOUVENIR + " "):
        tags.add("souvenir")
        name = name[len(SOUVENIR):].strip()
    if not name:
        return None
    if starred:
        name = f"{STAR} {name}"
    return ItemDescriptor(
        name=name,
        wear=normalize_space(element.exterior),
        category_tags=frozenset(tags),
        is_agent=normalize_space(element.quality).lower() in AGENT_QUALITIES,
        is_knife="knife" in category,
        is_gloves="glove" in category,
        ordinal=ordinal,
    )


def build_descriptors(elements: Iterable[RawElement], include_unworn: bool = False) -> List[ItemDescriptor]:
    descriptors: List[ItemDescriptor] = []
    skipped = 0
    for element in elements:
        descriptor = build_descriptor(element, len(descriptors))
        if descriptor is None:
            skipped += 1
            continue
        special = descriptor.is_agent or descriptor.is_knife or descriptor.is_gloves
        if is_vanilla(descriptor.wear) and not (special or include_unworn):
            skipped += 1
            continue
        descriptors.append(descriptor)
    if skipped:
        logging.debug("Пропущено %s элемент(ов) без имени или износа", skipped)
    if not descriptors:
        raise NoItemsExtracted(
            "Инвентарь получен, но в нём нет предметов с износом, которые можно оценить."
        )
    return descriptors


def decorate(base: str, star: bool = False, stattrak: bool = False, souvenir: bool = False) -> str:
    starred = base.startswith(STAR)
    bare = base[len(STAR):].strip() if starred else base
    parts: List[str] = []
    if star or starred:
        parts.append(STAR)
    if stattrak:
        parts.append(STATTRAK)
    if souvenir:
        parts.append(SOUVENIR)
    parts.append(bare)
    return " ".join(parts)


def with_wear(name: str, wear: str) -> str:
    if is_vanilla(wear):
        return name
    return f"{name} ({wear})"


def _agent_candidates(descriptor: ItemDescriptor) -> List[str]:
    base = descriptor.name
    fields = [part.strip() for part in base.split("|")]
    variants = [base]
    if descriptor.wear:
        variants.append(f"{base}{FIELD_SEPARATOR}{descriptor.wear}")
    variants.append(f"Agent{FIELD_SEPARATOR}{base}")
    variants.append(f"{base}{FIELD_SEPARATOR}Agent")
    variants.append(", ".join(fields))
    if len(fields) >= 2:
        variants.append(FIELD_SEPARATOR.join(reversed(fields)))
    if descriptor.stattrak:
        marked: List[str] = []
        for variant in variants:
            marked.append(decorate(variant, stattrak=True))
            marked.append(decorate(variant, star=True, stattrak=True))
        variants.extend(marked)
    return variants


def _knife_candidates(descriptor: ItemDescriptor) -> List[str]:
    base = descriptor.name
    st = descriptor.stattrak
    names = [
        decorate(base, star=True, stattrak=st),
        decorate(base, stattrak=st),
        decorate(base, star=True),
        base,
    ]
    return [with_wear(name, descriptor.wear) for name in names] + [descriptor.wear]


def _gloves_candidates(descriptor: ItemDescriptor) -> List[str]:
    base = descriptor.name
    st = descriptor.stattrak
    wear = descriptor.wear
    return [
        with_wear(decorate(base, star=True, stattrak=st), wear),
        with_wear(decorate(base, stattrak=st), wear),
        with_wear(decorate(base, star=True), wear),
        with_wear(base, wear),
        decorate(base, star=True, stattrak=st),
        base,
        wear,
    ]


def _skin_candidates(descriptor: ItemDescriptor) -> List[str]:
    base = descriptor.name
    wear = descriptor.wear
    return [
        with_wear(decorate(base, stattrak=descriptor.stattrak, souvenir=descriptor.souvenir), wear),
        with_wear(decorate(base, stattrak=descriptor.stattrak), wear),
        with_wear(base, wear),
        wear,
    ]


def generate_candidates(descriptor: ItemDescriptor) -> List[str]:
    if descriptor.is_agent:
        raw = _agent_candidates(descriptor)
    elif descriptor.is_knife:
        raw = _knife_candidates(descriptor)
    elif descriptor.is_gloves:
        raw = _gloves_candidates(descriptor)
    else:
        raw = _skin_candidates(descriptor)
    seen = set()
    candidates: List[str] = []
    for name in raw:
        cleaned = normalize_space(name)
        key = cleaned.casefold()
        if not cleaned or key in seen:
            continue
        seen.add(key)
        candidates.append(cleaned)
    return candidates


def display_name(descriptor: ItemDescriptor) -> str:
    star = descriptor.is_knife or descriptor.is_gloves
    souvenir = descriptor.souvenir and not star
    return decorate(descriptor.name, star=star, stattrak=descriptor.stattrak, souvenir=souvenir)


def is_disconnect(exc: Exception) -> bool:
    if isinstance(exc, sa_exc.DisconnectionError):
        return True
    return isinstance(exc, sa_exc.DBAPIError) and exc.connection_invalidated


def build_prices_table(name: str, metadata: Optional[MetaData] = None) -> SQLTable:
    return SQLTable(
        name,
        metadata or MetaData(),
        Column("market_hash_name", String(255), primary_key=True),
        Column("price", Numeric(12, 2, asdecimal=False)),
        Column("icon_url", String(1024)),
    )


class StoreSession:
    def __init__(self, connection: Connection, table: SQLTable):
        self.connection = connection
        self.table = table

    def find_exact(self, names: Sequence[str]) -> List[CatalogRecord]:
        if not names:
            return []
        stmt = select(self.table).where(self.table.c.market_hash_name.in_(list(names)))
        try:
            rows = self.connection.execute(stmt).fetchall()
        except sa_exc.SQLAlchemyError as exc:
            if is_disconnect(exc):
                raise StoreUnavailable(f"Соединение с базой цен потеряно: {exc}") from exc
            self._reset()
            raise ChunkLookupFailed(f"Запрос {len(names)} имён не удался: {exc}") from exc
        return self._records(rows)

    def find_containing(self, parts: Sequence[str], limit: int = 1) -> List[CatalogRecord]:
        column = self.table.c.market_hash_name
        stmt = (
            select(self.table)
            .where(and_(*[column.contains(part, autoescape=True) for part in parts]))
            .order_by(column)
            .limit(limit)
        )
        try:
            rows = self.connection.execute(stmt).fetchall()
        except sa_exc.SQLAlchemyError as exc:
            self._reset()
            raise FallbackLookupFailed(f"Поиск по подстрокам {list(parts)!r} не удался: {exc}") from exc
        return self._records(rows)

    def _reset(self) -> None:
        try:
            self.connection.rollback()
        except sa_exc.SQLAlchemyError as exc:
            logging.debug("Откат транзакции не удался: %s", exc)

    def _records(self, rows) -> List[CatalogRecord]:
        records: List[CatalogRecord] = []
        for row in rows:
            price = coerce_decimal(row.price)
            if price is None:
                logging.debug("У %s нет цены, запись пропущена", row.market_hash_name)
                continue
            records.append(CatalogRecord(row.market_hash_name, price, row.icon_url or ""))
        return records


class PriceStore:
    def __init__(self, engine: Engine, table_name: str = "skin_prices"):
        self.engine = engine
        self.metadata = MetaData()
        self.table = build_prices_table(table_name, self.metadata)

    @classmethod
    def from_settings(cls, settings: Settings) -> "PriceStore":
        connect_args: Dict[str, Any] = {}
        if settings.database_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        try:
            engine = create_engine(
                settings.database_url,
                poolclass=QueuePool,
                pool_size=settings.pool_size,
                max_overflow=0,
                pool_timeout=settings.pool_timeout,
                pool_pre_ping=True,
                connect_args=connect_args,
            )
        except sa_exc.ArgumentError as exc:
            raise ConfigError(f"Некорректный database_url {settings.database_url!r}: {exc}") from exc
        return cls(engine, settings.prices_table)

    @contextmanager
    def session(self) -> Iterator[StoreSession]:
        try:
            connection = self.engine.connect()
        except sa_exc.TimeoutError as exc:
            raise StoreUnavailable("Нет свободных соединений с базой цен, попробуйте позже.") from exc
        except sa_exc.DBAPIError as exc:
            raise StoreUnavailable(f"База цен недоступна: {exc}") from exc
        try:
            yield StoreSession(connection, self.table)
        finally:
            connection.close()

    def create_schema(self) -> None:
        try:
            self.metadata.create_all(self.engine)
        except sa_exc.SQLAlchemyError as exc:
            raise StoreUnavailable(f"Не удалось создать таблицу цен: {exc}") from exc

    def load_prices(self, records: Sequence[CatalogRecord], chunk_size: int = DEFAULT_CHUNK_SIZE) -> int:
        column = self.table.c.market_hash_name
        try:
            with self.engine.begin() as conn:
                for start in range(0, len(records), chunk_size):
                    chunk = records[start:start + chunk_size]
                    conn.execute(self.table.delete().where(column.in_([r.canonical_name for r in chunk])))
                    conn.execute(
                        self.table.insert(),
                        [
                            {"market_hash_name": r.canonical_name, "price": float(r.price), "icon_url": r.icon_url}
                            for r in chunk
                        ],
                    )
        except sa_exc.SQLAlchemyError as exc:
            raise StoreUnavailable(f"Не удалось записать цены: {exc}") from exc
        return len(records)

    def dispose(self) -> None:
        self.engine.dispose()


def parse_price_dump(data: Any) -> List[CatalogRecord]:
    if isinstance(data, dict):
        entries = [dict(value, market_hash_name=name) for name, value in data.items() if isinstance(value, dict)]
    elif isinstance(data, list):
        entries = [entry for entry in data if isinstance(entry, dict)]
    else:
        raise ConfigError("Файл цен должен быть списком объектов или словарём name -> {price, icon_url}.")
    records: Dict[str, CatalogRecord] = {}
    for entry in entries:
        name = normalize_space(entry.get("market_hash_name") or entry.get("name"))
        price = coerce_decimal(entry.get("price"))
        if not name or price is None:
            continue
        icon = entry.get("icon_url") or entry.get("image") or ""
        records[name] = CatalogRecord(name, price, str(icon))
    return list(records.values())


class CatalogMatcher:
    def __init__(self, store: PriceStore, chunk_size: int = DEFAULT_CHUNK_SIZE, fallback_enabled: bool = True):
        if chunk_size < 1:
            raise ConfigError("chunk_size должен быть положительным")
        self.store = store
        self.chunk_size = chunk_size
        self.fallback_enabled = fallback_enabled

    def match(self, descriptors: Sequence[ItemDescriptor]) -> Dict[int, CatalogRecord]:
        index: Dict[str, List[Tuple[int, int]]] = {}
        names: List[str] = []
        for descriptor in descriptors:
            candidates = generate_candidates(descriptor)
            logging.debug("Кандидаты для %s: %s", descriptor.name, candidates)
            for rank, name in enumerate(candidates):
                key = candidate_key(name)
                if key not in index:
                    index[key] = []
                    names.append(name)
                index[key].append((descriptor.ordinal, rank))
        matches: Dict[int, CatalogRecord] = {}
        if not names:
            return matches
        with self.store.session() as session:
            best: Dict[int, Tuple[int, CatalogRecord]] = {}
            for record in self._lookup_exact(session, names):
                for ordinal, rank in index.get(candidate_key(record.canonical_name), []):
                    current = best.get(ordinal)
                    if current is None or rank < current[0]:
                        best[ordinal] = (rank, record)
            matches = {ordinal: record for ordinal, (_, record) in best.items()}
            if self.fallback_enabled:
                for descriptor in descriptors:
                    if descriptor.ordinal in matches or not descriptor.is_agent:
                        continue
                    record = self._lookup_fallback(session, descriptor)
                    if record is not None:
                        matches[descriptor.ordinal] = record
        return matches

    def _lookup_exact(self, session: StoreSession, names: Sequence[str]) -> List[CatalogRecord]:
        records: List[CatalogRecord] = []
        for start in range(0, len(names), self.chunk_size):
            chunk = names[start:start + self.chunk_size]
            try:
                records.extend(session.find_exact(chunk))
            except ChunkLookupFailed as exc:
                logging.warning("Пакет %s-%s пропущен: %s", start, start + len(chunk), exc)
        return records

    def _lookup_fallback(self, session: StoreSession, descriptor: ItemDescriptor) -> Optional[CatalogRecord]:
        parts = [part.strip() for part in descriptor.name.split("|") if part.strip()][:2]
        if not parts:
            return None
        try:
            found = session.find_containing(parts, limit=1)
        except FallbackLookupFailed as exc:
            logging.warning("Приблизительный поиск для %s не удался: %s", descriptor.name, exc)
            return None
        if found:
            logging.debug("Агент %s сопоставлен приблизительно: %s", descriptor.name, found[0].canonical_name)
            return found[0]
        return None


class EnrichmentPipeline:
    def __init__(self, matcher: CatalogMatcher, fail_on_store_unavailable: bool = True):
        self.matcher = matcher
        self.fail_on_store_unavailable = fail_on_store_unavailable

    def enrich(self, descriptors: Sequence[ItemDescriptor]) -> List[EnrichedItem]:
        descriptors = list(descriptors)
        try:
            matches = self.matcher.match(descriptors)
        except StoreUnavailable:
            if self.fail_on_store_unavailable:
                raise
            logging.exception("База цен недоступна, все %s предмет(ов) без цены", len(descriptors))
            matches = {}
        except Exception:
            logging.exception("Сопоставление цен не удалось, все %s предмет(ов) без цены", len(descriptors))
            matches = {}
        items: List[EnrichedItem] = []
        for descriptor in descriptors:
            record = matches.get(descriptor.ordinal)
            items.append(
                EnrichedItem(
                    display_name=display_name(descriptor),
                    wear=descriptor.wear,
                    price=record.price if record is not None else None,
                    icon_url=record.icon_url if record is not None else "",
                )
            )
        return items


def resolve_steam_id(value: str) -> str:
    text = (value or "").strip()
    if not text:
        raise InvalidTradeLink("Вставьте ссылку на обмен Steam или SteamID64.")
    if text.isdigit():
        number = int(text)
        return str(number if number >= STEAM_ID64_BASE else number + STEAM_ID64_BASE)
    parsed = urllib.parse.urlparse(text)
    partner = (urllib.parse.parse_qs(parsed.query).get("partner") or [""])[0].strip()
    if not parsed.scheme or not partner.isdigit():
        raise InvalidTradeLink("Ссылка на обмен некорректна или не содержит partner ID.")
    return str(int(partner) + STEAM_ID64_BASE)


def create_retry_session(verify: bool, proxies: Optional[Dict[str, str]] = None) -> requests.Session:
    session = requests.Session()
    retry = Retry(
        total=3,
        backoff_factor=0.6,
        status_forcelist=(429, 500, 502, 503, 504),
        allowed_methods=None,
    )
    adapter = HTTPAdapter(max_retries=retry)
    session.mount("https://", adapter)
    session.mount("http://", adapter)
    session.verify = verify
    if proxies:
        session.proxies.update(proxies)
    return session


def create_cloudflare_session(verify: bool, proxies: Optional[Dict[str, str]] = None) -> requests.Session:
    scraper = cloudscraper.create_scraper(browser={"browser": "chrome", "platform": "windows", "mobile": False})
    scraper.verify = verify
    if proxies:
        scraper.proxies.update(proxies)
    return scraper


class InventorySource:
    name = "csgo.exchange"

    def __init__(self, settings: Settings, session: Optional[requests.Session] = None):
        self.settings = settings
        self.cookie = settings.cookie or os.environ.get(COOKIE_ENV_VAR, "")
        if not self.cookie:
            raise ConfigError(f"Не задана cookie сессии csgo.exchange ({COOKIE_ENV_VAR}).")
        if session is not None:
            self.session = session
        elif settings.use_cloudscraper:
            self.session = create_cloudflare_session(settings.verify_tls, settings.proxies)
        else:
            self.session = create_retry_session(settings.verify_tls, settings.proxies)

    def build_headers(self, steam_id: str) -> Dict[str, str]:
        return {
            "accept": "text/html, */*; q=0.01",
            "accept-language": "en-US,en;q=0.9",
            "content-type": "application/x-www-form-urlencoded; charset=UTF-8",
            "origin": "https://csgo.exchange",
            "referer": self.settings.referer_template.format(steam_id=steam_id),
            "user-agent": DEFAULT_USER_AGENT,
            "x-requested-with": "XMLHttpRequest",
            "Cookie": self.cookie,
        }

    def fetch(self, steam_id: str) -> str:
        url = self.settings.source_url_template.format(steam_id=steam_id)
        logging.info("%s: POST %s", self.name, url)
        try:
            response = self.session.post(
                url,
                data="r=1",
                headers=self.build_headers(steam_id),
                timeout=self.settings.request_timeout,
            )
        except RequestException as exc:
            raise SourceUnavailable(f"{self.name}: сетевой сбой — {exc}") from exc
        if not response.ok:
            raise SourceUnavailable(f"{self.name} ответил статусом {response.status_code}")
        return response.text


def parse_inventory_html(html_source: str) -> List[RawElement]:
    soup = BeautifulSoup(html_source or "", "html.parser")
    elements: List[RawElement] = []
    for node in soup.select(".vItem"):
        classes = node.get("class") or []
        if isinstance(classes, str):
            classes = classes.split()
        elements.append(
            RawElement(
                exterior=node.get("data-exterior") or "",
                quality=node.get("data-quality") or "",
                category=" ".join(classes),
                search=node.get("data-search") or "",
            )
        )
    if not elements:
        raise SourceUnavailable(
            "Скины не найдены. Возможно, инвентарь приватный или cookie сессии csgo.exchange устарела."
        )
    return elements


class InventoryPricer:
    def __init__(
        self,
        settings: Settings,
        store: PriceStore,
        source: Optional[InventorySource] = None,
        pipeline: Optional[EnrichmentPipeline] = None,
    ):
        self.settings = settings
        self.store = store
        self.source = source
        if pipeline is None:
            matcher = CatalogMatcher(store, settings.chunk_size, settings.fallback_enabled)
            pipeline = EnrichmentPipeline(matcher, settings.fail_on_store_unavailable)
        self.pipeline = pipeline

    def price_inventory(self, trade_link_or_id: str) -> List[EnrichedItem]:
        steam_id = resolve_steam_id(trade_link_or_id)
        if self.source is None:
            raise ConfigError("Источник инвентаря не настроен.")
        html_source = self.source.fetch(steam_id)
        return self.price_markup(html_source)

    def price_markup(self, html_source: str) -> List[EnrichedItem]:
        elements = parse_inventory_html(html_source)
        descriptors = build_descriptors(elements, include_unworn=self.settings.include_unworn)
        logging.info("Извлечено %s предмет(ов) из %s элементов", len(descriptors), len(elements))
        items = self.pipeline.enrich(descriptors)
        logging.info("Цены найдены для %s из %s", sum(1 for item in items if item.found), len(items))
        return items


def error_payload(exc: InventoryError) -> Dict[str, Any]:
    return {"error": exc.message, "reason": exc.reason, "retryable": exc.retryable}


def render_inventory(items: Sequence[EnrichedItem], currency: str = "USD", title: Optional[str] = None) -> None:
    table = Table(title=title or f"Инвентарь — {len(items)} предмет(ов)", box=box.SIMPLE_HEAVY)
    table.add_column("Скин", style="bold")
    table.add_column("Износ")
    table.add_column("Цена", justify="right")
    table.add_column("Иконка", overflow="fold")
    if not items:
        table.add_row("—", "Нет предметов", "—", "—")
    for item in items:
        price = format_money(item.price, currency)
        table.add_row(item.display_name, item.wear or "—", price if item.found else f"[red]{price}[/red]", item.icon_url or "—")
    console.print(table)
    total = sum((item.price for item in items if item.price is not None), Decimal("0"))
    found = sum(1 for item in items if item.found)
    console.print(
        Panel(
            f"Итого: {format_money(total, currency)} — оценено {found} из {len(items)}",
            style="cyan",
        )
    )


def build_settings(raw: Dict[str, Any], overrides: argparse.Namespace) -> Settings:
    data = raw.get("settings", {}) or {}
    defaults = Settings()
    cookie = str(data.get("cookie") or "")
    # unresolved ${VAR} after expand_env
    if cookie.startswith("$"):
        cookie = ""
    try:
        settings = Settings(
            source_url_template=str(data.get("source_url_template", defaults.source_url_template)),
            referer_template=str(data.get("referer_template", defaults.referer_template)),
            cookie=cookie,
            use_cloudscraper=bool(parse_optional_bool(data.get("use_cloudscraper", False))),
            request_timeout=float(data.get("request_timeout", defaults.request_timeout)),
            verify_tls=bool(parse_optional_bool(data.get("verify_tls", True))),
            proxies=data.get("proxies") or {},
            database_url=str(data.get("database_url") or defaults.database_url),
            prices_table=str(data.get("prices_table") or defaults.prices_table),
            pool_size=int(data.get("pool_size", defaults.pool_size)),
            pool_timeout=float(data.get("pool_timeout", defaults.pool_timeout)),
            chunk_size=int(data.get("chunk_size", defaults.chunk_size)),
            fallback_enabled=bool(parse_optional_bool(data.get("fallback_enabled", True))),
            include_unworn=bool(parse_optional_bool(data.get("include_unworn", False))),
            fail_on_store_unavailable=bool(parse_optional_bool(data.get("fail_on_store_unavailable", True))),
            currency=(data.get("currency") or "USD").upper(),
        )
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"Некорректное значение в settings: {exc}") from exc
    if getattr(overrides, "database_url", None):
        settings.database_url = overrides.database_url
    if getattr(overrides, "chunk_size", None):
        settings.chunk_size = overrides.chunk_size
    if getattr(overrides, "no_fallback", False):
        settings.fallback_enabled = False
    if settings.chunk_size < 1:
        raise ConfigError("chunk_size должен быть положительным")
    if settings.pool_size < 1:
        raise ConfigError("pool_size должен быть положительным")
    if settings.pool_timeout <= 0:
        raise ConfigError("pool_timeout должен быть больше нуля")
    return settings


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Оценка инвентаря CS:GO по справочной таблице цен.")
    parser.add_argument("-c", "--config", help="Путь к YAML конфигурации")
    parser.add_argument("--database-url", help="SQLAlchemy URL базы цен")
    parser.add_argument("--chunk-size", type=int, help="Размер пакета имён в одном запросе")
    parser.add_argument("--no-fallback", action="store_true", help="Отключить приблизительный поиск агентов")
    parser.add_argument("--log-level", default="INFO", help="Уровень логирования (DEBUG, INFO, ...)")
    sub = parser.add_subparsers(dest="command", required=True)
    price = sub.add_parser("price", help="Оценить инвентарь по ссылке на обмен или SteamID64")
    price.add_argument("target", nargs="?", default="", help="Trade link, account ID или SteamID64")
    price.add_argument("--html-file", help="Разобрать сохранённую разметку вместо запроса к сайту")
    price.add_argument("--json", action="store_true", help="Вывести результат в JSON")
    load = sub.add_parser("load-prices", help="Загрузить JSON-дамп цен в базу")
    load.add_argument("path", help="JSON файл с market_hash_name, price, icon_url")
    return parser.parse_args(argv)


def run_price(args: argparse.Namespace, settings: Settings, store: PriceStore) -> None:
    if args.html_file:
        with open(args.html_file, "r", encoding="utf-8") as fh:
            markup = fh.read()
        items = InventoryPricer(settings, store).price_markup(markup)
    else:
        pricer = InventoryPricer(settings, store, InventorySource(settings))
        items = pricer.price_inventory(args.target)
    if args.json:
        print(json.dumps([item.to_dict() for item in items], ensure_ascii=False, indent=2))
    else:
        render_inventory(items, settings.currency)


def run_load_prices(args: argparse.Namespace, store: PriceStore) -> None:
    with open(args.path, "r", encoding="utf-8") as fh:
        records = parse_price_dump(json.load(fh))
    store.create_schema()
    count = store.load_prices(records)
    console.print(f"[green]Загружено {count} цен[/green]")


def main(argv: Optional[Sequence[str]] = None) -> None:
    args = parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        config = load_config(args.config)
        settings = build_settings(config, args)
        store = PriceStore.from_settings(settings)
    except ConfigError as exc:
        console.print(f"[red]Ошибка конфигурации:[/red] {exc}")
        sys.exit(2)
    try:
        if args.command == "load-prices":
            run_load_prices(args, store)
        else:
            run_price(args, settings, store)
    except ConfigError as exc:
        console.print(f"[red]Ошибка конфигурации:[/red] {exc}")
        sys.exit(2)
    except InventoryError as exc:
        if getattr(args, "json", False):
            print(json.dumps(error_payload(exc), ensure_ascii=False))
        else:
            console.print(Panel(exc.message, title=exc.reason, style="red"))
        sys.exit(3 if exc.retryable else 1)
    finally:
        store.dispose()


if __name__ == "__main__":
    main()
