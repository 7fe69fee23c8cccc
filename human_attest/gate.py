"""
Approval Gate - command line runner for CI pipelines.

Blocks until a verified human approves the commit or the timeout passes.

Exit codes:
    0  approved
    1  timed out
    2  attestation rejected (validation or integrity)
    3  configuration error
"""

import argparse
import asyncio
import json
import logging
import os
import sys
from typing import Optional, Dict, List

import httpx

from .approval_poller import (
    ApprovalPoller,
    ApprovalResult,
    ApprovalWorkflow,
    build_approval_url,
    build_status_url,
)
from .attestation_codec import serialize_attestation
from .config import GateSettings, configure_logging, load_settings
from .errors import ApprovalTimeoutError, AttestationIntegrityError, AttestationValidationError
from .vcs_status import GitHubStatusPublisher, LoggingStatusPublisher, StatusPublisher

logger = logging.getLogger("approval_gate")

EXIT_APPROVED = 0
EXIT_TIMED_OUT = 1
EXIT_REJECTED = 2
EXIT_CONFIG_ERROR = 3


class ConfigurationError(Exception):
    pass


def _parse_params(pairs: List[str]) -> Dict[str, str]:
    params = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key:
            raise ConfigurationError(f"Expected key=value, got: {pair!r}")
        params[key] = value
    return params


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="human-attest-gate",
        description="Wait for a verified human to approve a commit",
    )
    parser.add_argument("--config", help="YAML settings file")
    parser.add_argument("--approval-url", help="Base URL of the approval server")
    parser.add_argument("--repo", help="Repository (owner/name); defaults to $GITHUB_REPOSITORY")
    parser.add_argument("--commit", help="Commit SHA; defaults to $GITHUB_SHA")
    parser.add_argument("--provider", help="Proof-of-personhood provider id")
    parser.add_argument(
        "--param", action="append", default=[], metavar="KEY=VALUE",
        help="Provider parameter added to the approval URL (repeatable)",
    )
    parser.add_argument("--timeout-minutes", type=float)
    parser.add_argument("--poll-interval-seconds", type=float)
    parser.add_argument("--github-token", help="Token for commit status and comment updates")
    parser.add_argument("--output", help="Write outputs as JSON to this file instead of stdout")
    return parser


def resolve_settings(args: argparse.Namespace, environ=None) -> GateSettings:
    environ = os.environ if environ is None else environ
    try:
        settings = load_settings(args.config, environ)
    except (OSError, ValueError) as e:
        raise ConfigurationError(str(e))

    if args.approval_url:
        settings.approval_base_url = args.approval_url
    if args.provider:
        settings.provider = args.provider
    if args.timeout_minutes is not None:
        settings.timeout_minutes = args.timeout_minutes
    if args.poll_interval_seconds is not None:
        settings.poll_interval_seconds = args.poll_interval_seconds
    if args.github_token:
        settings.github_token = args.github_token
    settings.provider_params.update(_parse_params(args.param))

    if not settings.approval_base_url:
        raise ConfigurationError("Approval URL is required (--approval-url or approval_base_url)")
    try:
        settings.validate()
    except ValueError as e:
        raise ConfigurationError(str(e))
    return settings


def make_publisher(
    settings: GateSettings,
    repository: str,
    commit_sha: str,
    client: Optional[httpx.AsyncClient] = None,
) -> StatusPublisher:
    if settings.github_token:
        return GitHubStatusPublisher(
            settings.github_token,
            repository,
            commit_sha,
            api_url=settings.github_api_url,
            client=client,
        )
    logger.warning("No GitHub token provided, skipping status updates")
    return LoggingStatusPublisher()


async def run_gate(
    settings: GateSettings,
    repository: str,
    commit_sha: str,
    client: Optional[httpx.AsyncClient] = None,
) -> ApprovalResult:
    approval_url = build_approval_url(
        settings.approval_base_url, repository, commit_sha,
        settings.provider, settings.provider_params,
    )
    status_url = build_status_url(
        settings.approval_base_url, repository, commit_sha, settings.status_path,
    )
    logger.info(f"Provider: {settings.provider}, timeout: {settings.timeout_minutes:g} minutes")

    async def _run(http: httpx.AsyncClient) -> ApprovalResult:
        poller = ApprovalPoller(
            status_url,
            poll_interval_seconds=settings.poll_interval_seconds,
            timeout_seconds=settings.timeout_seconds,
            client=http,
        )
        workflow = ApprovalWorkflow(
            repository, commit_sha, approval_url, poller,
            make_publisher(settings, repository, commit_sha, http),
        )
        return await workflow.run()

    if client is not None:
        return await _run(client)
    async with httpx.AsyncClient(timeout=settings.http_timeout_seconds) as http:
        return await _run(http)


def write_outputs(result: ApprovalResult, output: Optional[str]) -> None:
    outputs = {"attestation": serialize_attestation(result.attestation)}
    outputs.update(result.outputs())
    text = json.dumps(outputs, indent=2)
    if output:
        with open(output, 'w') as f:
            f.write(text + '\n')
        logger.info(f"Wrote approval outputs to {output}")
    else:
        print(text)


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        settings = resolve_settings(args)
        repository = args.repo or os.environ.get("GITHUB_REPOSITORY")
        commit_sha = args.commit or os.environ.get("GITHUB_SHA")
        if not repository or not commit_sha:
            raise ConfigurationError("Repository and commit are required (--repo/--commit)")
    except ConfigurationError as e:
        configure_logging()
        logger.error(f"Configuration error: {e}")
        return EXIT_CONFIG_ERROR

    configure_logging(settings.log_level)

    try:
        result = asyncio.run(run_gate(settings, repository, commit_sha))
    except ApprovalTimeoutError as e:
        logger.error(e.message)
        return EXIT_TIMED_OUT
    except (AttestationValidationError, AttestationIntegrityError) as e:
        logger.error(f"Attestation rejected: {e.message}")
        return EXIT_REJECTED

    write_outputs(result, args.output)
    return EXIT_APPROVED


if __name__ == "__main__":
    sys.exit(main())
