"""Health probes: point-in-time checks of whether a service is up.

Every probe exposes ``async check() -> ProbeResult``. Conditions that are
expected while a service is still coming up (connection refused, container
not reporting health yet) are ``unhealthy`` and get retried. Only broken
configuration, such as a malformed URL, is reported as ``error``.
"""
import asyncio
import json

import httpx

from .errors import ConfigurationError
from .logger import get_logger
from .models import ProbeResult, ProbeStatus

logger = get_logger("probes")


class HealthProbe:
    """Base class for probes"""

    kind = "probe"

    async def check(self):
        raise NotImplementedError

    def describe(self):
        return self.kind


class HttpStatusProbe(HealthProbe):
    kind = "http"

    def __init__(self, url, expected_status=200, timeout_s=10.0, headers=None, transport=None):
        self.url = url
        self.expected_status = expected_status
        self.timeout_s = timeout_s
        self.headers = dict(headers or {})
        self.transport = transport

    def describe(self):
        return f"GET {self.url} -> {self.expected_status}"

    def _validate_url(self):
        try:
            url = httpx.URL(self.url)
        except (httpx.InvalidURL, TypeError) as e:
            return f"invalid url {self.url!r}: {e}"
        if url.scheme not in ("http", "https") or not url.host:
            return f"invalid url {self.url!r}: expected http(s)://host[:port]/path"
        return None

    async def check(self):
        problem = self._validate_url()
        if problem:
            return ProbeResult.error(problem)

        try:
            async with httpx.AsyncClient(timeout=self.timeout_s, transport=self.transport) as client:
                resp = await client.get(self.url, headers=self.headers)
        except httpx.UnsupportedProtocol as e:
            return ProbeResult.error(f"unsupported protocol for {self.url}: {e}")
        except httpx.RequestError as e:
            return ProbeResult.unhealthy(f"{type(e).__name__}: {e}")

        if resp.status_code == self.expected_status:
            return ProbeResult.healthy(f"status {resp.status_code}")
        return ProbeResult.unhealthy(f"status {resp.status_code}, expected {self.expected_status}")


def _entries(payload):
    """Turn a status payload into a list of mappings, whatever its shape"""
    if isinstance(payload, (bytes, bytearray)):
        payload = payload.decode("utf-8", errors="replace")
    if isinstance(payload, str):
        text = payload.strip()
        if not text:
            return []
        try:
            payload = json.loads(text)
        except json.JSONDecodeError:
            # newer compose releases print one JSON object per line
            payload = []
            for line in text.splitlines():
                line = line.strip()
                if not line:
                    continue
                try:
                    payload.append(json.loads(line))
                except json.JSONDecodeError:
                    return []
    if isinstance(payload, dict):
        return [payload]
    if isinstance(payload, list):
        return [p for p in payload if isinstance(p, dict)]
    return []


def extract_health_field(payload, field="Health", service=None):
    """Read a single string field from a container status response.

    Accepts a single object, a list of objects, or newline-delimited objects.
    When ``service`` is given the entry for that service wins; entries naming
    other services are never used in its place. Without ``service``, or when
    no entry is named at all, the first entry is used. Returns None when the field is absent or the payload
    cannot be parsed.
    """
    entries = _entries(payload)
    if not entries:
        return None

    chosen = entries[0]
    if service is not None:
        matches = [e for e in entries if service in (e.get("Service"), e.get("Name"))]
        if matches:
            chosen = matches[0]
        elif any("Service" in e or "Name" in e for e in entries):
            # only other containers reported; their health says nothing about this one
            return None

    value = chosen.get(field)
    if value is None or isinstance(value, (dict, list)):
        return None
    return str(value)


class ContainerHealthProbe(HealthProbe):
    kind = "container"

    def __init__(self, service, field="Health", expected="healthy", command=("docker", "compose"), project_dir=None):
        self.service = service
        self.field = field
        self.expected = expected
        self.command = tuple(command)
        self.project_dir = project_dir

    def describe(self):
        return f"{' '.join(self.command)} ps {self.service} .{self.field} == {self.expected}"

    async def check(self):
        argv = [*self.command, "ps", self.service, "--format", "json"]
        try:
            proc = await asyncio.create_subprocess_exec(
                *argv,
                cwd=self.project_dir,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError as e:
            return ProbeResult.error(f"container runtime not found: {e}")
        except PermissionError as e:
            return ProbeResult.error(f"cannot run container runtime: {e}")
        except NotADirectoryError as e:
            return ProbeResult.error(f"bad project directory {self.project_dir!r}: {e}")

        try:
            stdout, stderr = await proc.communicate()
        except asyncio.CancelledError:
            # the retry loop timed this attempt out; don't leave the process behind
            if proc.returncode is None:
                proc.kill()
            raise

        if proc.returncode != 0:
            tail = stderr.decode("utf-8", errors="replace").strip()[-200:]
            return ProbeResult.unhealthy(f"exit code {proc.returncode}: {tail}")

        value = extract_health_field(stdout, self.field, self.service)
        if value is None:
            return ProbeResult.unhealthy(f"{self.field} not reported for {self.service}")
        if value == self.expected:
            return ProbeResult.healthy(f"{self.field}={value}")
        return ProbeResult.unhealthy(f"{self.field}={value}")


class TcpConnectProbe(HealthProbe):
    kind = "tcp"

    def __init__(self, host, port, timeout_s=5.0):
        self.host = host
        self.port = port
        self.timeout_s = timeout_s

    def describe(self):
        return f"tcp {self.host}:{self.port}"

    async def check(self):
        if not self.host or isinstance(self.port, bool) or not isinstance(self.port, int) or not 0 < self.port < 65536:
            return ProbeResult.error(f"invalid address {self.host!r}:{self.port!r}")

        try:
            reader, writer = await asyncio.wait_for(
                asyncio.open_connection(self.host, self.port), timeout=self.timeout_s
            )
        except asyncio.TimeoutError:
            return ProbeResult.unhealthy(f"connect to {self.host}:{self.port} timed out")
        except OSError as e:
            return ProbeResult.unhealthy(f"connect to {self.host}:{self.port} failed: {e}")

        writer.close()
        try:
            await writer.wait_closed()
        except OSError:
            pass
        return ProbeResult.healthy()


class ScriptedProbe(HealthProbe):
    """Replays a fixed sequence of results; the last one repeats"""

    kind = "scripted"

    def __init__(self, results, delay_s=0.0):
        if not results:
            raise ConfigurationError("scripted probe needs at least one result")
        self.results = [r if isinstance(r, ProbeResult) else ProbeResult(ProbeStatus(r)) for r in results]
        self.delay_s = delay_s
        self.calls = 0

    def describe(self):
        return f"scripted {[r.status.value for r in self.results]}"

    async def check(self):
        idx = min(self.calls, len(self.results) - 1)
        self.calls += 1
        if self.delay_s > 0:
            await asyncio.sleep(self.delay_s)
        return self.results[idx]


def build_probe(spec, default_timeout_s=10.0):
    """Create a probe from its config mapping"""
    if not isinstance(spec, dict):
        raise ConfigurationError(f"probe must be an object, got {type(spec).__name__}")

    kind = spec.get("type")
    try:
        timeout_s = spec.get("timeout_s", default_timeout_s)
        timeout_s = float(timeout_s) if timeout_s is not None else None
        if kind == "http":
            headers = spec.get("headers") or {}
            if not isinstance(headers, dict) or not all(
                    isinstance(k, str) and isinstance(v, str) for k, v in headers.items()):
                raise ConfigurationError("http probe headers must map names to string values")
            return HttpStatusProbe(
                spec["url"],
                expected_status=int(spec.get("expected_status", 200)),
                timeout_s=timeout_s,
                headers=headers,
            )
        if kind == "container":
            return ContainerHealthProbe(
                spec["service"],
                field=spec.get("field", "Health"),
                expected=spec.get("expected", "healthy"),
                command=spec.get("command", ("docker", "compose")),
                project_dir=spec.get("project_dir"),
            )
        if kind == "tcp":
            return TcpConnectProbe(
                spec["host"],
                int(spec["port"]),
                timeout_s=timeout_s,
            )
        if kind == "scripted":
            return ScriptedProbe(spec["results"], delay_s=float(spec.get("delay_s", 0.0)))
    except KeyError as e:
        raise ConfigurationError(f"{kind} probe is missing field {e.args[0]!r}") from e
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"invalid {kind} probe: {e}") from e

    raise ConfigurationError(f"unknown probe type {kind!r}")
