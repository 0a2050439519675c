"""
Order Engine Entry Point
========================
Command-line access to the order assembler.

    python main.py quote MENU_JSON REQUEST_JSON CUSTOMER_JSON
        Price an order against a menu file. Nothing is stored.

    python main.py place CUSTOMER_ID REQUEST_JSON
        Assemble and store an order through Supabase.

Prints the order record (or the error) as JSON. Exit status 0 on success,
1 on an order error, 2 on an invalid request.
"""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict, Optional

from assembler import OrderAssembler
from config import (
    ConfigurationError,
    configure_logging,
    get_config,
    validate_configuration,
)
from customers import CustomerProfile
from errors import OrderError
from memory import InMemoryCatalog, InMemoryCustomers
from validation import validate_order_request


logger = logging.getLogger(__name__)


def _load_json(path: str) -> Any:
    return json.loads(Path(path).read_text(encoding="utf-8"))


def _emit(payload: Dict[str, Any]):
    json.dump(payload, sys.stdout, indent=2)
    sys.stdout.write("\n")


async def _quote(args: argparse.Namespace) -> Dict[str, Any]:
    ordering = get_config().ordering
    customer = CustomerProfile.from_dict(_load_json(args.customer))

    assembler = OrderAssembler(
        catalog=InMemoryCatalog.from_documents([_load_json(args.menu)]),
        customers=InMemoryCustomers([customer]),
        tax_rate=ordering.tax_rate,
        max_extra_depth=ordering.max_extra_depth,
        enforce_max_selectable=ordering.enforce_max_selectable,
        order_number_prefix=ordering.order_number_prefix
    )

    request, error = validate_order_request(_load_json(args.request))
    if error:
        raise ValueError(error)

    record = await assembler.assemble_order(customer.customer_id, request)
    return record.to_dict()


async def _place(args: argparse.Namespace) -> Dict[str, Any]:
    request, error = validate_order_request(_load_json(args.request))
    if error:
        raise ValueError(error)

    validate_configuration()
    record = await OrderAssembler.from_config().place_order(args.customer_id, request)
    return record.to_dict()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Nested-extras order engine")
    parser.add_argument("--log-level", default=None)
    commands = parser.add_subparsers(dest="command", required=True)

    quote = commands.add_parser("quote", help="price an order offline")
    quote.add_argument("menu")
    quote.add_argument("request")
    quote.add_argument("customer")
    quote.set_defaults(handler=_quote)

    place = commands.add_parser("place", help="assemble and store an order")
    place.add_argument("customer_id")
    place.add_argument("request")
    place.set_defaults(handler=_place)

    return parser


def main(argv: Optional[list] = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        configure_logging(args.log_level)
        result = asyncio.run(args.handler(args))

    except ConfigurationError as e:
        logger.error(f"Configuration error: {e}")
        _emit({"error": {"kind": "configuration", "message": str(e)}})
        return 2

    except ValueError as e:
        _emit({"error": {"kind": "invalid_request", "message": str(e)}})
        return 2

    except OrderError as e:
        _emit({"error": e.to_dict()})
        return 1

    _emit(result)
    return 0


if __name__ == "__main__":
    sys.exit(main())
