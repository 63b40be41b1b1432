"""Lua transform scripts: load, sandbox, and run ``transform(input)``.

Every call builds a brand new Lua runtime, so nothing a script does can
leak into the next request. JSON values map onto Lua values like this:

    null    <-> nil
    bool    <-> boolean
    number  <-> number (integers stay integers)
    string  <-> string
    object  <-> table with string keys
    array   <-> table with keys 1..n

Going back, a table whose largest positive integer key is n > 0 becomes an
array of length n (holes become null) unless n is more than twice its key
count. Any other table, including an empty one, becomes an object with
integer keys written as strings. Tables that contain themselves are rejected. Because Lua tables cannot store nil, ``null`` object
members and trailing ``null`` array items do not survive a round trip.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import lupa
from lupa import LuaError, LuaRuntime

from hookfeed.errors import ScriptError
from hookfeed.utils.logging import get_logger

log = get_logger(__name__)

DEFAULT_MAX_INSTRUCTIONS = 10_000_000

# Globals removed before user code runs
_UNSAFE_GLOBALS = (
    "io",
    "dofile",
    "loadfile",
    "load",
    "loadstring",
    "require",
    "package",
    "python",
    "collectgarbage",
)

# Runs before user code. Every coroutine gets the same count hook, and all
# threads draw on one shared budget. Returns the cycle check for outputs.
_SANDBOX = """
local limit = {limit}
local step = math.min(limit, 1000)
local used = 0
local sethook, create, resume = debug.sethook, coroutine.create, coroutine.resume
local rawtype, next = type, next

local function hook()
  used = used + step
  if used >= limit then error("instruction limit exceeded", 2) end
end

sethook(hook, "", step)

local function spawn(fn)
  local co = create(fn)
  sethook(co, hook, "", step)
  return co
end

coroutine.create = spawn

local function unwrap(ok, ...)
  if not ok then error((...), 0) end
  return ...
end

coroutine.wrap = function(fn)
  local co = spawn(fn)
  return function(...) return unwrap(resume(co, ...)) end
end

os = {{ time = os.time, date = os.date, clock = os.clock }}
debug = nil

local function cyclic(value, path)
  if rawtype(value) ~= "table" then return false end
  if path[value] then return true end
  path[value] = true
  for _, item in next, value do
    if cyclic(item, path) then return true end
  end
  path[value] = nil
  return false
end

return function(value) return cyclic(value, {{}}) end
"""


@dataclass(frozen=True)
class Script:
    name: str
    source: str


def load_script(path: str | Path, name: str | None = None) -> Script:
    """Read a script from disk. Raises ScriptError if it cannot be read."""
    path = Path(path)
    label = name or path.name
    try:
        source = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        raise ScriptError(label, f"cannot read {path}: {exc}") from exc
    return Script(name=label, source=source)


# ----------------------------------------------------------------------
# Value bridge
# ----------------------------------------------------------------------

def to_lua(lua: LuaRuntime, value: Any) -> Any:
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    if isinstance(value, dict):
        table = lua.table()
        for key, item in value.items():
            table[str(key)] = to_lua(lua, item)
        return table
    if isinstance(value, (list, tuple)):
        table = lua.table()
        for index, item in enumerate(value, start=1):
            table[index] = to_lua(lua, item)
        return table
    raise TypeError(f"cannot convert {type(value).__name__} to a Lua value")


def _key(key: Any) -> str | None:
    if isinstance(key, bytes):
        return key.decode("utf-8", errors="replace")
    if isinstance(key, str):
        return key
    if isinstance(key, int) and not isinstance(key, bool):
        return str(key)
    return None


def from_lua(value: Any) -> Any:
    kind = lupa.lua_type(value)
    if kind is None:
        # plain Python value already (nil, boolean, number or string)
        if isinstance(value, bytes):
            return value.decode("utf-8", errors="replace")
        return value
    if kind != "table":
        # functions, coroutines and userdata have no JSON form
        return None

    items = list(value.items())
    max_index = max(
        (k for k, _ in items if isinstance(k, int) and not isinstance(k, bool) and k > 0),
        default=0,
    )
    if 0 < max_index <= 2 * len(items):
        return [from_lua(value[i]) for i in range(1, max_index + 1)]
    # too sparse for an array: integer keys become strings
    out = {}
    for k, v in items:
        key = _key(k)
        if key is not None:
            out[key] = from_lua(v)
    return out


# ----------------------------------------------------------------------
# Execution
# ----------------------------------------------------------------------

class Transformer:
    """Runs scripts against JSON documents in isolated Lua runtimes."""

    def __init__(self, max_instructions: int = DEFAULT_MAX_INSTRUCTIONS) -> None:
        self._max_instructions = max_instructions

    def _new_runtime(self) -> tuple[LuaRuntime, Any]:
        lua = LuaRuntime(register_eval=False, register_builtins=False)
        cyclic = lua.execute(_SANDBOX.format(limit=int(self._max_instructions)))
        g = lua.globals()
        for name in _UNSAFE_GLOBALS:
            g[name] = None
        return lua, cyclic

    def transform(self, script: Script, document: Any) -> Any:
        """Run ``script`` over ``document`` and return the converted result.

        Raises ScriptError when the script fails to compile, has no
        ``transform`` function, or errors while running.
        """
        lua, cyclic = self._new_runtime()
        try:
            lua.execute(script.source)
        except LuaError as exc:
            raise ScriptError(script.name, f"failed to load: {exc}") from exc

        fn = lua.globals().transform
        if lupa.lua_type(fn) != "function":
            raise ScriptError(script.name, "transform function not found")

        try:
            result = fn(to_lua(lua, document))
        except LuaError as exc:
            raise ScriptError(script.name, f"transform failed: {exc}") from exc

        # extra return values are ignored
        if isinstance(result, tuple):
            result = result[0] if result else None
        try:
            if cyclic(result):
                raise ScriptError(script.name, "cyclic table in output")
            return from_lua(result)
        except LuaError as exc:
            raise ScriptError(script.name, f"cannot convert output: {exc}") from exc
        except RecursionError:
            raise ScriptError(script.name, "output is nested too deeply") from None

    async def run(self, script: Script, document: Any) -> Any:
        """Like ``transform`` but off the event loop."""
        return await asyncio.to_thread(self.transform, script, document)


class ScriptLoader:
    """Resolves middleware script names against the middleware directory."""

    def __init__(self, middleware_dir: str | Path) -> None:
        self._dir = Path(middleware_dir)

    def path_for(self, name: str) -> Path:
        path = (self._dir / name).resolve()
        if not path.is_relative_to(self._dir.resolve()):
            raise ScriptError(name, "script path escapes the middleware directory")
        return path

    def load(self, name: str) -> Script:
        return load_script(self.path_for(name), name=name)

    async def aload(self, name: str) -> Script:
        return await asyncio.to_thread(self.load, name)
