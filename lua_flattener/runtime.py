"""Bundle rendering.

The emitted file is a fixed Lua runtime with the serialized artifacts
substituted into ``__LUAFLAT_*__`` slots. The closure table comes first so the
line of every closure is known before the rest of the file is rendered; see
:data:`CLOSURES_FIRST_LINE`.
"""

import textwrap

from lua_flattener.errors import BuildError
from lua_flattener.luaenc import quote_string
from lua_flattener.serializer import EmissionSet


class RenderError(BuildError):
    """Raised when the runtime template is inconsistent."""


_CLOSURES_MARKER: str = "__LUAFLAT_CLOSURES__"
_LINE_OFFSETS_MARKER: str = "__LUAFLAT_LINE_OFFSETS__"
_OBJECT_TREE_MARKER: str = "__LUAFLAT_OBJECT_TREE__"
_ENV_NAME_MARKER: str = "__LUAFLAT_ENV_NAME__"
_VERSION_MARKER: str = "__LUAFLAT_VERSION__"


def render_bundle(
    *,
    emission: EmissionSet,
    env_name: str,
    version: str,
    entry_ref: int | None,
) -> str:
    """Render the final single-file bundle.

    :param emission: Serialized artifacts.
    :param env_name: Display name of the bundle environment (root folder name).
    :param version: Bundler version embedded in the runtime.
    :param entry_ref: Reference id whose load result the chunk returns, if any.
    :returns: Lua source of the bundle.
    :raises RenderError: If a template placeholder is missing.
    """

    runtime: str = _RUNTIME_TEMPLATE
    for marker in (
        _CLOSURES_MARKER,
        _LINE_OFFSETS_MARKER,
        _OBJECT_TREE_MARKER,
        _ENV_NAME_MARKER,
        _VERSION_MARKER,
    ):
        if marker not in runtime:
            raise RenderError(f"Internal error: runtime template missing {marker} marker.")

    # Closures go in first: every later slot sits below them, so substituting
    # multi-line text there cannot move a closure.
    runtime = runtime.replace(_CLOSURES_MARKER, emission.closures_text)
    runtime = runtime.replace(_LINE_OFFSETS_MARKER, emission.offsets_text)
    runtime = runtime.replace(_OBJECT_TREE_MARKER, emission.tree_text)
    runtime = runtime.replace(_ENV_NAME_MARKER, quote_string(env_name))
    runtime = runtime.replace(_VERSION_MARKER, quote_string(version))

    if entry_ref is not None:
        runtime += f"return LoadNode(RefNodes[{entry_ref}])\n"
    return runtime


_RUNTIME_TEMPLATE: str = textwrap.dedent(
    r'''
    -- This file was generated by lua-flattener. It is intentionally "one huge file".
    --
    -- Every script of the bundled model is embedded below as a closure, next to a
    -- compact encoding of the instance tree. At load time the tree is rebuilt and
    -- require() is emulated for bundled ModuleScripts.

    local ClosureBindings = __LUAFLAT_CLOSURES__

    local LineOffsets = __LUAFLAT_LINE_OFFSETS__

    local ObjectTree = __LUAFLAT_OBJECT_TREE__

    local EnvName = __LUAFLAT_ENV_NAME__
    local Version = __LUAFLAT_VERSION__

    -- Indexed by the numeric kind tags of the object tree.
    local ClassNames = {"Folder", "ModuleScript", "Script", "LocalScript", "StringValue"}

    local RealRequire = require
    local Warn = warn or print

    local RefNodes = {}
    local NodeRefs = {}
    local NodeChildren = {}
    local NodePaths = {}
    local ChunkNames = {}
    local ModuleCache = {}
    local Loading = {}
    local MappedErrors = {}
    local MaxRef = 0

    local Node = {}
    local NodeMethods = {}

    Node.__index = function(self, key)
        local method = NodeMethods[key]
        if method ~= nil then
            return method
        end
        return NodeMethods.FindFirstChild(self, key)
    end

    Node.__tostring = function(self)
        return self.Name
    end

    function NodeMethods.GetChildren(self)
        local children = {}
        for i, child in ipairs(NodeChildren[self]) do
            children[i] = child
        end
        return children
    end

    function NodeMethods.GetDescendants(self)
        local descendants = {}
        local function collect(parent)
            for _, child in ipairs(NodeChildren[parent]) do
                table.insert(descendants, child)
                collect(child)
            end
        end
        collect(self)
        return descendants
    end

    function NodeMethods.FindFirstChild(self, name, recursive)
        for _, child in ipairs(NodeChildren[self]) do
            if rawget(child, "Name") == name then
                return child
            end
        end
        if recursive then
            for _, child in ipairs(NodeChildren[self]) do
                local found = NodeMethods.FindFirstChild(child, name, true)
                if found ~= nil then
                    return found
                end
            end
        end
        return nil
    end

    function NodeMethods.FindFirstChildOfClass(self, className)
        for _, child in ipairs(NodeChildren[self]) do
            if rawget(child, "ClassName") == className then
                return child
            end
        end
        return nil
    end

    function NodeMethods.WaitForChild(self, name)
        local child = NodeMethods.FindFirstChild(self, name)
        if child == nil then
            error("Infinite yield possible on '" .. NodeMethods.GetFullName(self) .. ":WaitForChild(\"" .. tostring(name) .. "\")'", 2)
        end
        return child
    end

    function NodeMethods.GetFullName(self)
        local parts = {}
        local current = self
        while current ~= nil do
            table.insert(parts, 1, rawget(current, "Name"))
            current = rawget(current, "Parent")
        end
        return table.concat(parts, ".")
    end

    function NodeMethods.IsA(self, className)
        return rawget(self, "ClassName") == className
    end

    local function NewNode(className, name, parent)
        local node = setmetatable({ClassName = className, Name = name, Parent = parent}, Node)
        NodeChildren[node] = {}
        if parent ~= nil then
            table.insert(NodeChildren[parent], node)
        end
        return node
    end

    local Root = NewNode("Folder", EnvName, nil)

    local function BuildNode(record, parent)
        local ref, tag = record[1], record[2]
        local className = ClassNames[tag]
        local properties, children = record[3], record[4]
        -- Without properties the children list moves up into slot 3.
        if properties ~= nil and type(properties[1]) == "table" then
            properties, children = nil, properties
        end

        local node = NewNode(className, className, parent)
        if className == "StringValue" then
            rawset(node, "Value", "")
        end
        if properties ~= nil then
            for key, value in pairs(properties) do
                if key == 1 then
                    rawset(node, "Name", value)
                else
                    rawset(node, key, value)
                end
            end
        end

        -- Dotted path from the bundle roots, as used in compile diagnostics.
        local path = rawget(node, "Name")
        if parent ~= Root then
            path = NodePaths[parent] .. "." .. path
        end
        NodePaths[node] = path
        ChunkNames[path] = true

        RefNodes[ref] = node
        NodeRefs[node] = ref
        if ref > MaxRef then
            MaxRef = ref
        end

        if children ~= nil then
            for _, childRecord in ipairs(children) do
                BuildNode(childRecord, node)
            end
        end
        return node
    end

    for _, record in ipairs(ObjectTree) do
        BuildNode(record, Root)
    end

    local function MapError(message)
        if LineOffsets == nil or type(message) ~= "string" or MappedErrors[message] then
            return message
        end
        local source, line, rest = string.match(message, "^(.-):(%d+): (.*)$")
        -- Deferred compile errors already name their script.
        if line == nil or ChunkNames[source] then
            return message
        end
        line = tonumber(line)

        local bestRef, bestStart = nil, nil
        for ref, start in pairs(LineOffsets) do
            if start <= line and (bestStart == nil or start > bestStart) then
                bestRef, bestStart = ref, start
            end
        end
        if bestRef == nil then
            return message
        end

        local mapped = NodeMethods.GetFullName(RefNodes[bestRef]) .. ":" .. (line - bestStart + 1) .. ": " .. rest
        MappedErrors[mapped] = true
        return mapped
    end

    local Bundle = {
        envname = EnvName,
        version = Version,
        root = Root,
        shared = {},
    }

    local LoadNode

    local function IsNode(value)
        return type(value) == "table" and getmetatable(value) == Node
    end

    local function FindModule(path)
        local current = Root
        for segment in string.gmatch(path, "[^/]+") do
            current = NodeMethods.FindFirstChild(current, segment)
            if current == nil then
                return nil
            end
        end
        if current ~= Root and rawget(current, "ClassName") == "ModuleScript" then
            return current
        end
        return nil
    end

    local function BundleRequire(target, ...)
        if IsNode(target) then
            if rawget(target, "ClassName") ~= "ModuleScript" then
                error("Attempted to call require with a non-ModuleScript: " .. NodeMethods.GetFullName(target), 2)
            end
            return LoadNode(target)
        end
        if type(target) == "string" then
            local module = FindModule(target)
            if module ~= nil then
                return LoadNode(module)
            end
        end
        if RealRequire == nil then
            error("Module not found: " .. tostring(target), 2)
        end
        return RealRequire(target, ...)
    end

    Bundle.require = BundleRequire

    LoadNode = function(node)
        local ref = NodeRefs[node]
        local closure = ref and ClosureBindings[ref]
        if closure == nil then
            return
        end

        local cached = ModuleCache[ref]
        if cached ~= nil then
            return cached[1]
        end
        if Loading[ref] then
            error("Cyclic require detected while loading " .. NodeMethods.GetFullName(node), 0)
        end

        Loading[ref] = true
        local context = {bundle = Bundle, script = node, require = BundleRequire}
        local ok, result = xpcall(function()
            return closure(context)
        end, MapError)
        Loading[ref] = nil
        if not ok then
            error(result, 0)
        end

        ModuleCache[ref] = {result}
        return result
    end

    Bundle.load = LoadNode

    for ref = 1, MaxRef do
        local node = RefNodes[ref]
        if node ~= nil and ClosureBindings[ref] ~= nil then
            local className = rawget(node, "ClassName")
            if className == "Script" or className == "LocalScript" then
                local ok, err = pcall(LoadNode, node)
                if not ok then
                    Warn(EnvName .. " " .. Version .. ": error in " .. NodeMethods.GetFullName(node) .. ": " .. tostring(err))
                end
            end
        end
    end

    '''
).lstrip()


def _closures_first_line() -> int:
    idx: int = _RUNTIME_TEMPLATE.find(_CLOSURES_MARKER)
    if idx < 0:
        raise RenderError(f"Internal error: runtime template missing {_CLOSURES_MARKER} marker.")
    # The closure table opens on the marker line; its first entry is on the next one.
    return _RUNTIME_TEMPLATE[0:idx].count("\n") + 2


CLOSURES_FIRST_LINE: int = _closures_first_line()
