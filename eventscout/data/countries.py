from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class CountryContext:
    iso2: str
    locale: str
    tld: str
    names: tuple[str, ...]
    cities: tuple[str, ...]


COUNTRY_ALIASES = {
    "DE": "DE",
    "GERMANY": "DE",
    "DEUTSCHLAND": "DE",
    "FR": "FR",
    "FRANCE": "FR",
    "FRANKREICH": "FR",
    "NL": "NL",
    "NETHERLANDS": "NL",
    "HOLLAND": "NL",
    "GB": "GB",
    "UK": "GB",
    "UNITEDKINGDOM": "GB",
    "GREATBRITAIN": "GB",
    "ENGLAND": "GB",
    "ES": "ES",
    "SPAIN": "ES",
    "ESPANA": "ES",
    "IT": "IT",
    "ITALY": "IT",
    "ITALIA": "IT",
    "AT": "AT",
    "AUSTRIA": "AT",
    "OSTERREICH": "AT",
    "CH": "CH",
    "SWITZERLAND": "CH",
    "SCHWEIZ": "CH",
    "US": "US",
    "USA": "US",
    "UNITEDSTATES": "US",
}

COUNTRIES: dict[str, CountryContext] = {
    "DE": CountryContext(
        iso2="DE",
        locale="de",
        tld=".de",
        names=("Germany", "Deutschland"),
        cities=("Berlin", "München", "Frankfurt", "Hamburg", "Köln", "Stuttgart", "Düsseldorf", "Leipzig"),
    ),
    "FR": CountryContext(
        iso2="FR",
        locale="fr",
        tld=".fr",
        names=("France", "Frankreich"),
        cities=("Paris", "Lyon", "Marseille", "Lille", "Toulouse", "Bordeaux", "Nantes"),
    ),
    "NL": CountryContext(
        iso2="NL",
        locale="nl",
        tld=".nl",
        names=("Netherlands", "Nederland", "Holland"),
        cities=("Amsterdam", "Rotterdam", "The Hague", "Utrecht", "Eindhoven"),
    ),
    "GB": CountryContext(
        iso2="GB",
        locale="en",
        tld=".uk",
        names=("United Kingdom", "UK", "England"),
        cities=("London", "Manchester", "Birmingham", "Edinburgh", "Leeds"),
    ),
    "ES": CountryContext(
        iso2="ES",
        locale="es",
        tld=".es",
        names=("Spain", "España"),
        cities=("Madrid", "Barcelona", "Valencia", "Sevilla", "Bilbao"),
    ),
    "IT": CountryContext(
        iso2="IT",
        locale="it",
        tld=".it",
        names=("Italy", "Italia"),
        cities=("Milano", "Roma", "Torino", "Bologna", "Firenze"),
    ),
    "AT": CountryContext(
        iso2="AT",
        locale="de",
        tld=".at",
        names=("Austria", "Österreich"),
        cities=("Wien", "Vienna", "Graz", "Salzburg", "Linz"),
    ),
    "CH": CountryContext(
        iso2="CH",
        locale="de",
        tld=".ch",
        names=("Switzerland", "Schweiz", "Suisse"),
        cities=("Zürich", "Zurich", "Genève", "Geneva", "Basel", "Bern"),
    ),
    "US": CountryContext(
        iso2="US",
        locale="en",
        tld=".us",
        names=("United States", "USA"),
        cities=("New York", "Washington", "Chicago", "San Francisco", "Boston"),
    ),
}


def normalize_country(value: str | None) -> str:
    """Map a country name or code to ISO-2, ``ALL`` for empty or pan-regional input."""
    if not value:
        return "ALL"
    compact = "".join(ch for ch in value.upper() if ch.isalpha())
    if compact in {"", "ALL", "EU", "EUROPE"}:
        return "ALL"
    if compact in COUNTRY_ALIASES:
        return COUNTRY_ALIASES[compact]
    return compact


def get_country_context(iso2: str | None) -> CountryContext | None:
    if not iso2:
        return None
    return COUNTRIES.get(iso2.upper())


def country_matches(value: str | None, iso2: str) -> bool:
    """True when a free-form country value refers to ``iso2``."""
    if not value:
        return False
    normalized = normalize_country(value)
    if normalized == iso2:
        return True
    context = get_country_context(iso2)
    if context is None:
        return False
    lowered = value.strip().lower()
    return any(name.lower() == lowered for name in context.names) or any(
        city.lower() == lowered for city in context.cities
    )


def host_matches_country(host: str, iso2: str) -> bool:
    context = get_country_context(iso2)
    if context is None or not host:
        return False
    host = host.lower()
    if host.endswith(context.tld):
        return True
    return iso2 == "GB" and host.endswith(".co.uk")
