#!/usr/bin/env python3
"""
Convert policy CSV files (local or remote) into Rule manifests.

Each non-blank, non-comment line becomes one ``---``-prefixed YAML document
named with the same content key the adapter uses, so the output can be
applied to a cluster and then loaded unchanged.

Examples:
  kuberules-convert -i policy.csv
  kuberules-convert -i https://example.com/rbac_policy.csv -o rbac_policy.yaml
  kuberules-convert -i keymatch_policy.csv --label casbin.grepplabs.com/model=keymatch
"""

import argparse
import asyncio
import csv
import sys
from typing import Any, Dict, List, Optional, Sequence

import httpx
import yaml

from kuberules.app.records.codec import RuleRecord, project, to_object
from kuberules.shared.config import get_converter_config
from kuberules.shared.errors import RuleStoreException, TransportError, ValidationError
from kuberules.shared.logging import configure_logging
from kuberules.shared.retry import RetryConfig, retry_on_exception


FETCH_RETRY = RetryConfig(max_attempts=3, base_delay=0.5, max_delay=5.0)


def parse_labels(value: str) -> Dict[str, str]:
    """Parse ``key=value[,key=value...]``."""
    labels: Dict[str, str] = {}
    for pair in value.split(","):
        key, sep, label_value = pair.partition("=")
        if not sep or not key.strip():
            raise argparse.ArgumentTypeError(f"invalid label {pair!r}, expected key=value")
        labels[key.strip()] = label_value.strip()
    return labels


def _is_url(source: str) -> bool:
    return source.startswith("http://") or source.startswith("https://")


def _check_remote_content(response: httpx.Response) -> str:
    content_type = response.headers.get("Content-Type", "")
    if content_type and not content_type.startswith("text/") and "csv" not in content_type:
        raise ValidationError(f"unexpected Content-Type {content_type!r} (did you use a raw URL?)")
    body = response.text
    if body.strip().startswith("<!DOCTYPE html>"):
        raise ValidationError("fetched HTML not policy (did you pass a blob URL instead of raw?)")
    return body


@retry_on_exception(exceptions=(TransportError,), config=FETCH_RETRY)
async def fetch_policy(url: str) -> str:
    """Download a policy file, retrying transient failures."""
    try:
        async with httpx.AsyncClient(follow_redirects=True, timeout=30.0) as client:
            response = await client.get(url)
    except httpx.HTTPError as e:
        raise TransportError(f"http get {url!r}: {e}") from e

    if response.status_code >= 500:
        raise TransportError(f"http get {url!r}: unexpected status {response.status_code}")
    if not 200 <= response.status_code < 300:
        raise ValidationError(f"http get {url!r}: unexpected status {response.status_code}")
    return _check_remote_content(response)


def read_policy_content(source: str) -> str:
    if source == "-":
        raise ValidationError("stdin input is not supported, please provide a file path or HTTP(S) URL")
    if _is_url(source):
        return asyncio.run(fetch_policy(source))
    try:
        with open(source, "r", encoding="utf-8") as f:
            return f.read()
    except OSError as e:
        raise ValidationError(f"read file {source!r}: {e}") from e


def parse_policy_content(content: str) -> List[RuleRecord]:
    """One record per policy line; the first field is the rule type."""
    records: List[RuleRecord] = []
    for line in content.splitlines():
        line = line.strip()
        if not line or line.startswith("#"):
            continue
        try:
            tokens = next(csv.reader([line], skipinitialspace=True))
        except csv.Error as e:
            raise ValidationError(f"parse csv line {line!r}: {e}") from e
        if not tokens:
            continue
        records.append(project(tokens[0], tokens[1:]))
    return records


def build_rule_document(record: RuleRecord,
                        namespace: Optional[str] = None,
                        labels: Optional[Dict[str, str]] = None) -> str:
    manifest: Dict[str, Any] = to_object(record, namespace, labels).to_manifest()
    return "---\n" + yaml.safe_dump(manifest, sort_keys=False, default_flow_style=False)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="kuberules-convert",
        description="Convert policy CSV files into Rule manifests.",
        epilog=__doc__.split("Examples:", 1)[1] if __doc__ else None,
        formatter_class=argparse.RawDescriptionHelpFormatter
    )
    parser.add_argument("-i", "--input", help="Path or URL to the policy CSV (file or http/https)")
    parser.add_argument("-o", "--output", default="-", help="Output file for generated YAML; '-' for stdout")
    parser.add_argument("-n", "--namespace", default="", help="Target namespace for generated Rules")
    parser.add_argument(
        "--label",
        action="append",
        type=parse_labels,
        default=[],
        help="Label to add to metadata.labels (repeatable: --label key=value)"
    )
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    config = get_converter_config()
    configure_logging("kuberules-convert", log_level=config.log_level, log_format=config.log_format, stream=sys.stderr)

    if not args.input:
        parser.print_usage(sys.stderr)
        print("error: missing --input/-i (must be file or URL)", file=sys.stderr)
        return 1

    labels: Dict[str, str] = {}
    for entry in args.label:
        labels.update(entry)

    try:
        records = parse_policy_content(read_policy_content(args.input))
        documents = [build_rule_document(record, args.namespace, labels) for record in records]

        if args.output == "-":
            sys.stdout.write("".join(documents))
        else:
            with open(args.output, "a", encoding="utf-8") as f:
                f.write("".join(documents))
    except RuleStoreException as e:
        print(f"error: {e.message}", file=sys.stderr)
        return 1
    except OSError as e:
        print(f"error: write output: {e}", file=sys.stderr)
        return 1

    return 0


def run() -> None:
    sys.exit(main())


if __name__ == "__main__":
    run()
