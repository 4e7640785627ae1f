#!/usr/bin/env python3
"""
Clawkpit agent CLI - pair an agent with a board and push content to it.

Usage:
    python cli/clawkpit_agent.py connect --email you@example.com   # Pair this machine
    python cli/clawkpit_agent.py push-markdown notes.md            # Something to read
    python cli/clawkpit_agent.py push-form questions.md            # Something to fill in
"""

import json
import os
import sys
import time
import argparse
from pathlib import Path
from typing import Any, Dict, Optional

import requests
from requests.exceptions import ConnectionError, Timeout
from rich.console import Console
from rich.panel import Panel

# Configuration
CONFIG_DIR = Path.home() / ".clawkpit"
CONFIG_FILE = CONFIG_DIR / "config.json"
DEFAULT_BASE_URL = "http://localhost:3000"

console = Console()


def print_error(text: str):
    """Print error message."""
    console.print(f"[red]Error:[/red] {text}")


def print_success(text: str):
    """Print success message."""
    console.print(f"[green]✓[/green] {text}")


class APIError(Exception):
    """Non-2xx response, carrying the error envelope."""

    def __init__(self, status_code: int, code: str, message: str):
        super().__init__(message)
        self.status_code = status_code
        self.code = code
        self.message = message


class ClawkpitAgentClient:
    """Clawkpit API client for agents."""

    def __init__(self, base_url: Optional[str] = None, api_token: Optional[str] = None):
        self.config = self._load_config()
        self.base_url = (base_url or self.config.get("base_url") or DEFAULT_BASE_URL).rstrip("/")
        self.api_token = api_token or self.config.get("api_token")
        self.timeout = 30

    def _load_config(self) -> dict:
        """Load configuration from file."""
        if not CONFIG_FILE.exists():
            return {}
        try:
            with open(CONFIG_FILE) as f:
                return json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            print_error(f"Ignoring unreadable config {CONFIG_FILE}: {e}")
            return {}

    def save_config(self):
        """Save configuration to file."""
        CONFIG_DIR.mkdir(parents=True, exist_ok=True)
        with open(CONFIG_FILE, "w") as f:
            json.dump({"base_url": self.base_url, "api_token": self.api_token}, f, indent=2)
        os.chmod(CONFIG_FILE, 0o600)  # The token is a durable credential

    def _request(self, method: str, endpoint: str, auth: bool = True, **kwargs) -> Dict[str, Any]:
        """Make an API request; raises APIError on error responses."""
        headers = {"Content-Type": "application/json"}
        if auth:
            if not self.api_token:
                raise APIError(401, "UNAUTHORIZED", "Not connected. Run: clawkpit_agent.py connect --email ...")
            headers["Authorization"] = f"Bearer {self.api_token}"

        response = requests.request(
            method,
            f"{self.base_url}/api{endpoint}",
            headers=headers,
            timeout=self.timeout,
            **kwargs
        )
        if response.ok:
            return response.json() if response.content else {}

        try:
            error = response.json().get("error", {})
        except ValueError:
            error = {}
        raise APIError(
            response.status_code,
            error.get("code", "ERROR"),
            error.get("message", response.reason),
        )

    # ========== API Methods ==========

    def start_pairing(self, email: str) -> dict:
        return self._request("POST", "/openclaw/device/start", auth=False, json={"email": email})

    def poll_pairing(self, device_code: str) -> dict:
        return self._request("POST", "/openclaw/device/poll", auth=False, json={"device_code": device_code})

    def push_markdown(self, markdown: str, title: Optional[str] = None, external_id: Optional[str] = None) -> dict:
        payload = {"markdown": markdown, "title": title, "externalId": external_id}
        return self._request("POST", "/agent/markdown", json={k: v for k, v in payload.items() if v is not None})

    def push_form(self, form_markdown: str, title: Optional[str] = None, external_id: Optional[str] = None) -> dict:
        payload = {"formMarkdown": form_markdown, "title": title, "externalId": external_id}
        return self._request("POST", "/agent/form", json={k: v for k, v in payload.items() if v is not None})


def cmd_connect(client: ClawkpitAgentClient, args):
    """Run the device pairing flow and store the credential."""
    started = client.start_pairing(args.email)
    interval = max(1, int(started.get("interval", 3)))

    console.print(Panel(
        f"[bold]{started['display_code']}[/bold]\n\n"
        f"Open Clawkpit in your browser and enter this code to connect the agent.",
        title="Connect agent",
    ))

    with console.status("Waiting for confirmation..."):
        while True:
            time.sleep(interval)
            try:
                result = client.poll_pairing(started["device_code"])
            except APIError as e:
                if e.status_code == 429:
                    continue
                raise
            if result.get("status") == "authorized":
                break

    client.api_token = result["api_token"]
    client.save_config()
    print_success(f"Connected. Credential saved to {CONFIG_FILE}")


def _read_file(path: str) -> str:
    with open(path, encoding="utf-8") as f:
        return f.read()


def cmd_push_markdown(client: ClawkpitAgentClient, args):
    result = client.push_markdown(_read_file(args.file), title=args.title, external_id=args.external_id)
    print_success(f"Markdown pushed (item {result['itemId']})")


def cmd_push_form(client: ClawkpitAgentClient, args):
    result = client.push_form(_read_file(args.file), title=args.title, external_id=args.external_id)
    print_success(f"Form pushed (item {result['itemId']})")


def main():
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Clawkpit agent CLI - pair with a board and push content",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--base-url", help=f"Server URL (default: {DEFAULT_BASE_URL})")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    connect_parser = subparsers.add_parser("connect", help="Pair this agent with your board")
    connect_parser.add_argument("--email", required=True, help="Email of your Clawkpit account")

    for name, help_text in (("push-markdown", "Push markdown to read"), ("push-form", "Push a form to fill in")):
        push_parser = subparsers.add_parser(name, help=help_text)
        push_parser.add_argument("file", help="Markdown file")
        push_parser.add_argument("-t", "--title", help="Title (default: first heading)")
        push_parser.add_argument("--external-id", help="Stable id; re-pushing it updates the content")

    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        return

    client = ClawkpitAgentClient(base_url=args.base_url)
    commands = {
        "connect": cmd_connect,
        "push-markdown": cmd_push_markdown,
        "push-form": cmd_push_form,
    }
    try:
        commands[args.command](client, args)
    except APIError as e:
        print_error(f"{e.message} ({e.code})")
        sys.exit(1)
    except (ConnectionError, Timeout):
        print_error(f"Cannot reach {client.base_url}")
        sys.exit(1)
    except OSError as e:
        print_error(str(e))
        sys.exit(1)


if __name__ == "__main__":
    main()
