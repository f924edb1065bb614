"""
AgentScript parser.
Detects the source dialect and builds an AgentAST with error recovery:
every problem becomes a diagnostic and parsing resumes at the next
statement, so callers always get an AST back.
"""

import json
import re
import textwrap
from typing import Any

from loguru import logger

from .tokenizer import DSLTokenizer, TokenStream, decode_string_literal
from .types import (
    SECTION_TOKENS,
    AgentAST,
    Dialect,
    ParseError,
    ParseResult,
    SecretDef,
    SecretKind,
    Step,
    StepKind,
    Token,
    TokenType,
    Trigger,
    ValidationResult,
    VarDef,
    VarKind,
)
from .validator import AgentValidator


# Section headers sit at column 0; indented prompt text never flips the dialect.
DECLARATIVE_PROBE = re.compile(
    r"^(description|secrets|vars|variables|steps|outputs)\s*:", re.MULTILINE
)

BARE_REFERENCE = re.compile(r"^[A-Za-z_][\w.]*$")

STEP_KEY_ALIASES = {
    "action": "method",
    "timeoutMs": "timeout_ms",
    "timeout": "timeout_ms",
    "topK": "top_k",
    "type": "kind",
}

STRING_FIELDS = {
    "provider", "model", "prompt", "input", "text", "url", "operation", "backend",
    "collection", "query", "function", "when", "save",
}

INT_FIELDS = {"retries", "timeout_ms", "top_k"}

SECTION_HINT = "Expected one of: description, trigger, secrets, vars, steps, outputs, @end"


def detect_dialect(text: str) -> Dialect:
    """Pick the dialect with a cheap structural probe of section headers."""
    if DECLARATIVE_PROBE.search(text):
        return Dialect.DECLARATIVE
    return Dialect.TERSE


def _as_reference(expression: str) -> str:
    """``r`` in an output statement means the template ``{r}``."""
    if BARE_REFERENCE.match(expression):
        return "{" + expression + "}"
    return expression


def _scalar(raw: str) -> tuple[str, bool]:
    """Strip a raw value and unquote it when it is a single string literal."""
    raw = raw.strip()
    decoded = decode_string_literal(raw)
    if decoded is not None:
        return decoded, True
    return raw, False


class StepBuilder:
    """Collects step properties from either dialect and builds the Step."""

    def __init__(self, step_id: str | None, line: int):
        self.step_id = step_id
        self.line = line
        self.fields: dict[str, Any] = {}
        self.extra: dict[str, str] = {}

    def set(self, key: str, value: Any, quoted: bool, result: ValidationResult, line: int) -> None:
        key = STEP_KEY_ALIASES.get(key, key)
        location = f"steps.{self.step_id or '?'}.{key}"

        if key == "id":
            self.step_id = str(value)
            return
        if key in self.fields or key in self.extra:
            result.add_warning(
                f"Duplicate property '{key}' in step '{self.step_id}', last value wins",
                location, line=line,
            )

        try:
            converted = self._convert(key, value, quoted)
        except ValueError as e:
            result.add_error(str(e), location, line=line, suggestion=self._hint(key))
            return

        if key in STRING_FIELDS or key in INT_FIELDS or key in {"kind", "method", "headers", "body", "args"}:
            self.fields[key] = converted
        else:
            result.add_warning(f"Unknown step property '{key}'", location, line=line)
            self.extra[key] = str(converted)

    @staticmethod
    def _convert(key: str, value: Any, quoted: bool) -> Any:
        if key == "kind":
            kind = StepKind.parse(str(value))
            if kind is None:
                raise ValueError(f"Unknown step kind '{value}'")
            return kind
        if key in INT_FIELDS:
            try:
                return int(str(value))
            except ValueError:
                raise ValueError(f"Property '{key}' must be an integer, got '{value}'") from None
        if key == "method":
            return str(value).upper()
        if key in ("headers", "args"):
            if isinstance(value, dict):
                return value
            try:
                parsed = json.loads(value)
            except (TypeError, json.JSONDecodeError):
                raise ValueError(f"Property '{key}' must be a JSON object") from None
            if not isinstance(parsed, dict):
                raise ValueError(f"Property '{key}' must be a JSON object")
            return parsed
        if key == "body":
            if quoted or isinstance(value, dict):
                return value
            try:
                return json.loads(value)
            except json.JSONDecodeError:
                if value.lstrip().startswith(("{", "[")):
                    raise ValueError("Property 'body' is not valid JSON") from None
                return value
        return value

    @staticmethod
    def _hint(key: str) -> str | None:
        if key == "kind":
            return "Use one of: " + ", ".join(kind.value for kind in StepKind)
        if key in ("headers", "args", "body"):
            return 'Write JSON, e.g. {"Content-Type": "application/json"}'
        return None

    def build(self, result: ValidationResult) -> Step | None:
        if not self.step_id:
            result.add_error("Step is missing an 'id'", "steps", line=self.line,
                             suggestion="Start each step with '- id: name' or 'step name:'")
            return None
        return Step(id=self.step_id, extra=dict(self.extra), **self.fields)


class _AgentBuilder:
    """Mutable accumulator shared by both dialect parsers."""

    def __init__(self):
        self.result = ValidationResult()
        self.id = ""
        self.version: int | None = None
        self.description: str | None = None
        self.trigger: Trigger | None = None
        self.secrets: dict[str, SecretDef] = {}
        self.vars: dict[str, VarDef] = {}
        self.steps: list[Step] = []
        self.outputs: dict[str, str] = {}

    def parse_header(self, rest: str, line: int) -> None:
        match = re.match(r"^(\S+)(?:\s+v(\d+))?\s*$", rest.strip())
        if not match:
            self.result.add_error("Agent header needs an id", "id", line=line,
                                  suggestion="Write '@agent my-agent v1'")
            return
        self.id = match.group(1)
        if match.group(2):
            self.version = int(match.group(2))
        else:
            self.result.add_error("Agent header is missing a version", "version", line=line,
                                  suggestion=f"Write '@agent {self.id} v1'")

    def add_secret(self, name: str, secret: SecretDef, line: int) -> None:
        if name in self.secrets:
            self.result.add_warning(f"Duplicate secret '{name}', last definition wins",
                                    f"secrets.{name}", line=line)
        self.secrets[name] = secret

    def add_var(self, name: str, var: VarDef, line: int) -> None:
        if name in self.vars:
            self.result.add_warning(f"Duplicate variable '{name}', last definition wins",
                                    f"vars.{name}", line=line)
        self.vars[name] = var

    def add_output(self, key: str, value: str, line: int) -> None:
        if key in self.outputs:
            self.result.add_warning(f"Duplicate output '{key}', last definition wins",
                                    f"outputs.{key}", line=line)
        self.outputs[key] = value

    def add_step(self, builder: StepBuilder) -> None:
        step = builder.build(self.result)
        if step is not None:
            self.steps.append(step)

    def build(self) -> AgentAST:
        return AgentAST(
            id=self.id,
            version=self.version,
            description=self.description,
            trigger=self.trigger,
            secrets=dict(self.secrets),
            vars=dict(self.vars),
            steps=tuple(self.steps),
            outputs=dict(self.outputs),
        )


def parse_var_source(name: str, text: str, result: ValidationResult, line: int) -> VarDef | None:
    """
    Parse ``input.path``, ``env.NAME`` or a literal, followed by optional
    ``required`` and ``default <value>`` modifiers.
    """
    text = text.strip()
    literal = decode_string_literal(text)
    if literal is not None:
        return VarDef(VarKind.LITERAL, literal)

    head, _, rest = text.partition(" ")
    kind = None
    if head.startswith("input."):
        kind, source = VarKind.INPUT, head[len("input."):]
    elif head.startswith("env."):
        kind, source = VarKind.ENV, head[len("env."):]
    elif text and text[0] in "\"'":
        # a literal followed by modifiers
        tokens = DSLTokenizer(text).tokenize() if _lexes(text) else []
        if tokens and tokens[0].kind == TokenType.STRING:
            kind, source = VarKind.LITERAL, tokens[0].value
            rest = text[_string_end(text):]

    if kind is None:
        return VarDef(VarKind.LITERAL, text)

    required = False
    default = None
    rest = rest.strip()
    while rest:
        word, _, remainder = rest.partition(" ")
        if word == "required":
            required = True
            rest = remainder.strip()
        elif word == "default":
            default, _ = _scalar(remainder)
            rest = ""
        else:
            if kind == VarKind.LITERAL:
                return VarDef(VarKind.LITERAL, text)
            result.add_error(f"Unexpected '{word}' in variable '{name}'", f"vars.{name}", line=line,
                             suggestion="Only 'required' and 'default <value>' may follow the source")
            break
    return VarDef(kind, source, required, default)


def _lexes(text: str) -> bool:
    try:
        DSLTokenizer(text).tokenize()
    except ParseError:
        return False
    return True


def _string_end(text: str) -> int:
    quote = text[0]
    index = 1
    while index < len(text):
        if text[index] == "\\":
            index += 2
            continue
        if text[index] == quote:
            return index + 1
        index += 1
    return len(text)


class TerseParser:
    """Line-oriented parser for the ``@agent ... @end`` statement dialect."""

    STATEMENT = re.compile(r"^(@agent|@end|description|trigger|secret|var|step|output)\b")
    PROPERTY = re.compile(r"^([A-Za-z_][\w-]*)\s*:?\s*(.*)$")

    def __init__(self, text: str):
        self.lines = text.splitlines()
        self.agent = _AgentBuilder()
        self.index = 0
        self.seen_header = False
        self.seen_end = False

    def parse(self) -> tuple[AgentAST, ValidationResult]:
        result = self.agent.result
        current: StepBuilder | None = None

        while self.index < len(self.lines):
            line_no = self.index + 1
            stripped = self.lines[self.index].strip()
            self.index += 1

            if not stripped or stripped.startswith("#"):
                continue
            if self.seen_end:
                result.add_warning("Content after '@end' is ignored", line=line_no)
                break

            match = self.STATEMENT.match(stripped)
            if match is None:
                if current is None:
                    result.add_error(
                        f"Unrecognized statement '{stripped.split()[0]}'", line=line_no,
                        suggestion="Statements are @agent, description, trigger, secret, var, step, output, @end",
                    )
                else:
                    self._step_property(current, stripped, line_no)
                continue

            if current is not None:
                self.agent.add_step(current)
                current = None

            keyword = match.group(1)
            rest = stripped[len(keyword):].strip()
            try:
                current = self._statement(keyword, rest, line_no)
            except ValueError as e:
                result.add_error(str(e), line=line_no)

        if current is not None:
            self.agent.add_step(current)
        if not self.seen_header:
            result.add_error("Missing '@agent' header", "id", line=1,
                             suggestion="Start the file with '@agent my-agent v1'")
        elif not self.seen_end:
            result.add_warning("Missing '@end' terminator", line=len(self.lines))

        return self.agent.build(), result

    def _statement(self, keyword: str, rest: str, line_no: int) -> StepBuilder | None:
        agent = self.agent
        if keyword == "@agent":
            self.seen_header = True
            agent.parse_header(rest, line_no)
        elif keyword == "@end":
            self.seen_end = True
        elif keyword == "description":
            agent.description, _ = _scalar(rest)
        elif keyword == "trigger":
            parts = rest.split()
            if not parts:
                raise ValueError("Trigger needs a type, e.g. 'trigger http POST /hello'")
            args = parts[1:]
            # a leading '/' marks a path with no method
            method = args.pop(0).upper() if args and not args[0].startswith("/") else None
            path = args[0] if args else None
            agent.trigger = Trigger(parts[0], method, path)
        elif keyword == "secret":
            match = re.match(r"^([A-Za-z_][\w-]*)\s*=\s*(env|literal):(.*)$", rest)
            if not match:
                raise ValueError("Secret must look like 'secret NAME=env:VARIABLE'")
            reference, _ = _scalar(match.group(3))
            agent.add_secret(match.group(1), SecretDef(SecretKind(match.group(2)), reference), line_no)
        elif keyword == "var":
            match = re.match(r"^([A-Za-z_][\w-]*)\s*=\s*(.+)$", rest)
            if not match:
                raise ValueError("Variable must look like 'var name = input.path'")
            var = parse_var_source(match.group(1), match.group(2), agent.result, line_no)
            if var is not None:
                agent.add_var(match.group(1), var, line_no)
        elif keyword == "step":
            match = re.match(r"^([A-Za-z_][\w-]*)\s*:?$", rest)
            if not match:
                raise ValueError("Step must look like 'step name:'")
            return StepBuilder(match.group(1), line_no)
        elif keyword == "output":
            self._output(rest, line_no)
        return None

    def _output(self, rest: str, line_no: int) -> None:
        if not rest:
            raise ValueError("Output needs an expression, e.g. 'output {result}'")
        named = re.match(r"^([A-Za-z_][\w-]*)\s*=\s*(.+)$", rest)
        key, expression = ("result", rest) if named is None else named.groups()
        value, quoted = _scalar(expression)
        self.agent.add_output(key, value if quoted else _as_reference(value), line_no)

    def _step_property(self, builder: StepBuilder, stripped: str, line_no: int) -> None:
        match = self.PROPERTY.match(stripped)
        if not match or not match.group(2):
            self.agent.result.add_error(
                f"Expected 'key value' inside step '{builder.step_id}' but got '{stripped}'",
                f"steps.{builder.step_id}", line=line_no,
            )
            return
        key, raw = match.groups()
        if raw.startswith('"""'):
            builder.set(key, self._triple_quoted(raw, line_no), True, self.agent.result, line_no)
            return
        value, quoted = _scalar(raw)
        builder.set(key, value, quoted, self.agent.result, line_no)

    def _triple_quoted(self, raw: str, line_no: int) -> str:
        body = raw[3:]
        if body.endswith('"""') and len(raw) >= 6:
            return body[:-3]

        lines = [body] if body.strip() else []
        while self.index < len(self.lines):
            line = self.lines[self.index]
            self.index += 1
            if line.rstrip().endswith('"""'):
                last = line.rstrip()[:-3]
                if last.strip():
                    lines.append(last)
                return textwrap.dedent("\n".join(lines))
            lines.append(line)

        self.agent.result.add_error("Unterminated '\"\"\"' block", line=line_no,
                                    suggestion="Close the block with '\"\"\"' on its own line")
        return textwrap.dedent("\n".join(lines))


TEXT_KEYS = {
    "description", "prompt", "input", "text", "url", "path", "when", "query",
    "body", "headers", "args", "default", "value", "output",
}

KEY_LINE = re.compile(r"^(\s*)(-\s*)?([A-Za-z_][\w-]*)\s*:\s*(.*?)\s*$")
SECTION_LINE = re.compile(r"^\s*(description|trigger|secrets|vars|variables|steps|outputs|output)\s*:")


def mask_text_values(text: str) -> tuple[str, dict[int, str]]:
    """
    Lift free-text values out of declarative source before tokenizing.

    Prompts and templates hold arbitrary prose (apostrophes, punctuation) the
    tokenizer should never see. Each such value is removed from its line and
    returned keyed by 1-based line number; ``|`` blocks collect the following
    more-indented lines. Line numbering is preserved.
    """
    lines = text.split("\n")
    values: dict[int, str] = {}
    section = None
    index = 0

    while index < len(lines):
        line = lines[index]
        header = SECTION_LINE.match(line)
        if header and not line[:1].isspace():
            section = header.group(1)

        match = KEY_LINE.match(line)
        if match and match.group(4):
            key = match.group(3)
            in_outputs = section == "outputs" and key != "outputs"
            if key in TEXT_KEYS or in_outputs:
                cut = line.index(":", match.end(3)) + 1
                value = match.group(4)
                if value in ("|", "|-"):
                    indent = len(match.group(1)) + len(match.group(2) or "")
                    block = []
                    next_index = index + 1
                    while next_index < len(lines):
                        candidate = lines[next_index]
                        if candidate.strip() and len(candidate) - len(candidate.lstrip()) <= indent:
                            break
                        block.append(candidate)
                        lines[next_index] = ""
                        next_index += 1
                    while block and not block[-1].strip():
                        block.pop()
                    values[index + 1] = textwrap.dedent("\n".join(block))
                    lines[index] = line[:cut]
                    index = next_index
                    continue
                values[index + 1] = value
                lines[index] = line[:cut]
        index += 1

    return "\n".join(lines), values


class DeclarativeParser:
    """Token-driven parser for the ``section:`` keyword dialect."""

    MAX_RECOVERIES = 50

    def __init__(self, text: str):
        self.agent = _AgentBuilder()
        masked, self.text_values = mask_text_values(text)
        self.lines = masked.split("\n")
        self.stream = TokenStream(self._tokenize())

    def _tokenize(self) -> list[Token]:
        """Tokenize, blanking out lines the tokenizer rejects so parsing can continue."""
        for _ in range(self.MAX_RECOVERIES):
            tokenizer = DSLTokenizer("\n".join(self.lines))
            try:
                tokens = tokenizer.tokenize()
            except ParseError as e:
                self.agent.result.add_error(e.message, line=e.line_number, column=e.position,
                                            suggestion=e.suggestion)
                self.lines[e.line_number - 1] = ""
                continue
            self.agent.result.issues.extend(tokenizer.diagnostics)
            return tokens
        return DSLTokenizer("").tokenize()

    def parse(self) -> tuple[AgentAST, ValidationResult]:
        stream = self.stream
        result = self.agent.result
        stream.skip_newlines()

        if stream.at(TokenType.AGENT_START):
            token = stream.advance()
            self.agent.parse_header(self._rest_of_line(), token.line)
        else:
            token = stream.current()
            result.add_error(f"Expected '@agent' but got '{token.value or 'end of input'}'", "id",
                             line=token.line, column=token.column,
                             suggestion="Start the file with '@agent my-agent v1'")

        while True:
            stream.skip_newlines()
            token = stream.current()
            if token.kind == TokenType.EOF:
                result.add_warning("Missing '@end' terminator", line=token.line)
                break
            if token.kind == TokenType.AGENT_END:
                break

            handler = {
                TokenType.DESCRIPTION: self._description,
                TokenType.TRIGGER: self._trigger,
                TokenType.SECRETS: self._secrets,
                TokenType.VARS: self._vars,
                TokenType.STEPS: self._steps,
                TokenType.OUTPUTS: self._outputs,
                TokenType.OUTPUT: self._output,
            }.get(token.kind)

            if handler is None:
                result.add_error(f"Expected section keyword but got '{token.value}'",
                                 line=token.line, column=token.column, suggestion=SECTION_HINT)
                stream.skip_line()
                continue

            stream.advance()
            if stream.at(TokenType.COLON):
                stream.advance()
            handler(token)

        return self.agent.build(), result

    # line helpers

    def _rest_of_line(self) -> str:
        tokens = []
        while not self.stream.at(TokenType.NEWLINE, TokenType.EOF):
            tokens.append(self.stream.advance())
        return self._token_text(tokens) if tokens else ""

    def _token_text(self, tokens: list[Token]) -> str:
        """Source text spanned by ``tokens``; greedy so ``org/model-v2:7b`` stays whole."""
        if len(tokens) == 1 and tokens[0].kind == TokenType.STRING:
            return tokens[0].value
        first, last = tokens[0], tokens[-1]
        line = self.lines[first.line - 1]
        if last.kind == TokenType.STRING:
            return line[first.column - 1:].split(" #")[0].strip()
        return line[first.column - 1:last.column - 1 + len(last.value)]

    def _value(self, key: Token) -> tuple[str | None, bool]:
        """Value of the ``key:`` property whose colon was just consumed."""
        if key.line in self.text_values:
            self.stream.skip_line()
            return _scalar(self.text_values[key.line])
        tokens = []
        while not self.stream.at(TokenType.NEWLINE, TokenType.EOF):
            tokens.append(self.stream.advance())
        if self.stream.at(TokenType.NEWLINE):
            self.stream.advance()
        if not tokens:
            return None, False
        quoted = len(tokens) == 1 and tokens[0].kind == TokenType.STRING
        return self._token_text(tokens), quoted

    def _at_section_start(self) -> bool:
        self.stream.skip_newlines()
        token = self.stream.current()
        if token.kind in (TokenType.EOF, TokenType.AGENT_END):
            return True
        if token.kind == TokenType.OUTPUT:
            return True
        return token.kind in SECTION_TOKENS and self.stream.peek().kind == TokenType.COLON

    def _property(self) -> tuple[Token | None, bool, str | None, bool]:
        """
        Read one ``[-] key: value`` line.

        Returns:
            (key token or None on a malformed line, had dash, value, quoted)
        """
        stream = self.stream
        dash = False
        if stream.at(TokenType.DASH):
            stream.advance()
            dash = True
        key = stream.current()
        if not key.is_word() or stream.peek().kind != TokenType.COLON:
            self.agent.result.add_error(
                f"Expected 'key: value' but got '{key.value}'", line=key.line, column=key.column,
                suggestion="Check indentation and the ':' after the property name",
            )
            stream.skip_line()
            return None, dash, None, False
        stream.advance()
        stream.advance()
        value, quoted = self._value(key)
        return key, dash, value, quoted

    def _nested_map(self, parent: Token) -> dict[str, str]:
        """Read ``key: value`` lines indented below ``parent``."""
        values: dict[str, str] = {}
        while not self._at_section_start():
            token = self.stream.current()
            if token.column <= parent.column or token.kind == TokenType.DASH:
                break
            key, _, value, _ = self._property()
            if key is not None:
                values[key.value] = value or ""
        return values

    # sections

    def _description(self, token: Token) -> None:
        value, _ = self._value(token)
        self.agent.description = value

    def _trigger(self, token: Token) -> None:
        inline, _ = self._value(token)
        fields: dict[str, str | None] = {"type": None, "method": None, "path": None}
        if inline:
            parts = inline.split()
            names = ("type", "method", "path")
            if len(parts) == 2 and parts[1].startswith("/"):
                names = ("type", "path")
            fields.update(zip(names, parts))

        while not self._at_section_start():
            key, _, value, _ = self._property()
            if key is None:
                continue
            if key.value in fields:
                fields[key.value] = value
            else:
                self.agent.result.add_warning(f"Unknown trigger property '{key.value}'", "trigger",
                                              line=key.line)

        if not fields["type"]:
            self.agent.result.add_error("Trigger is missing 'type'", "trigger", line=token.line,
                                        suggestion="Add 'type: http'")
            return
        method = fields["method"].upper() if fields["method"] else None
        self.agent.trigger = Trigger(fields["type"], method, fields["path"])

    def _secrets(self, token: Token) -> None:
        item: dict[str, Any] | None = None

        def finish():
            if item is None:
                return
            name = item.get("name")
            if not name:
                self.agent.result.add_error("Secret is missing 'name'", "secrets", line=item["line"])
                return
            kind = SecretKind.LITERAL if item.get("type") == "literal" else SecretKind.ENV
            self.agent.add_secret(name, SecretDef(kind, item.get("value") or name), item["line"])

        while not self._at_section_start():
            key, dash, value, _ = self._property()
            if key is None:
                continue
            if dash:
                finish()
                item = {"line": key.line}
            elif item is None:
                self.agent.result.add_error(f"Expected '- name:' but got '{key.value}'", "secrets",
                                            line=key.line, suggestion="Start each secret with '- name: NAME'")
                continue
            if key.value not in ("name", "type", "value"):
                self.agent.result.add_warning(f"Unknown secret property '{key.value}'", "secrets",
                                              line=key.line)
                continue
            item[key.value] = value
        finish()

    VAR_PROPS = {"type", "from", "path", "required", "default", "value"}

    def _vars(self, token: Token) -> None:
        current: dict[str, Any] | None = None

        def finish():
            if current is None:
                return
            name = current["name"]
            kind_text = current.get("from")
            if kind_text is None and current.get("type") in {k.value for k in VarKind}:
                kind_text = current["type"]
            try:
                kind = VarKind(kind_text or "input")
            except ValueError:
                self.agent.result.add_error(f"Unknown variable source '{kind_text}'", f"vars.{name}",
                                            line=current["line"],
                                            suggestion="Use 'from: input', 'from: env' or 'from: literal'")
                return
            if kind == VarKind.LITERAL:
                source = current.get("value")
                if source is None:
                    self.agent.result.add_error(f"Literal variable '{name}' needs a 'value'",
                                                f"vars.{name}", line=current["line"])
                    return
            else:
                source = current.get("path") or current.get("value") or name
            required = str(current.get("required", "false")).lower() in ("true", "yes")
            self.agent.add_var(name, VarDef(kind, source, required, current.get("default")), current["line"])

        while not self._at_section_start():
            key, _, value, quoted = self._property()
            if key is None:
                continue
            if current is not None and key.value in self.VAR_PROPS and key.column > current["column"]:
                current[key.value] = value
                continue
            finish()
            current = None
            if value is None:
                current = {"name": key.value, "line": key.line, "column": key.column}
            elif quoted:
                self.agent.add_var(key.value, VarDef(VarKind.LITERAL, value), key.line)
            else:
                var = parse_var_source(key.value, value, self.agent.result, key.line)
                if var is not None:
                    self.agent.add_var(key.value, var, key.line)
        finish()

    def _steps(self, token: Token) -> None:
        builder: StepBuilder | None = None
        result = self.agent.result

        while not self._at_section_start():
            key, dash, value, quoted = self._property()
            if key is None:
                continue
            if dash:
                if builder is not None:
                    self.agent.add_step(builder)
                builder = StepBuilder(None, key.line)
            elif builder is None:
                result.add_error(f"Expected '- id:' but got '{key.value}'", "steps", line=key.line,
                                 suggestion="Start each step with '- id: name'")
                continue

            if value is None:
                if key.value in ("headers", "args", "body"):
                    builder.set(key.value, self._nested_map(key), False, result, key.line)
                else:
                    result.add_error(f"Property '{key.value}' has no value", f"steps.{builder.step_id}",
                                     line=key.line)
                continue
            builder.set(key.value, value, quoted, result, key.line)

        if builder is not None:
            self.agent.add_step(builder)

    def _outputs(self, token: Token) -> None:
        while not self._at_section_start():
            key, _, value, _ = self._property()
            if key is None:
                continue
            if value is None:
                self.agent.result.add_error(f"Output '{key.value}' has no value", "outputs", line=key.line)
                continue
            self.agent.add_output(key.value, value, key.line)

    def _output(self, token: Token) -> None:
        value, quoted = self._value(token)
        if not value:
            self.agent.result.add_error("Output needs an expression", "outputs", line=token.line)
            return
        self.agent.add_output("result", value if quoted else _as_reference(value), token.line)


class AgentParser:
    """Front door for turning AgentScript text into a ParseResult."""

    def __init__(self, validator: AgentValidator | None = None):
        self.validator = validator or AgentValidator()

    def parse(self, text: str, validate: bool = True) -> ParseResult:
        """
        Parse source text in either dialect.

        Args:
            text: AgentScript source
            validate: Merge semantic validation into the result

        Returns:
            ParseResult with the (possibly partial) AST and all diagnostics
        """
        dialect = detect_dialect(text)
        if dialect == Dialect.DECLARATIVE:
            ast, result = DeclarativeParser(text).parse()
        else:
            ast, result = TerseParser(text).parse()

        if validate:
            result.merge(self.validator.validate(ast))

        logger.debug(
            f"Parsed agent '{ast.id}' ({dialect.value}): {len(ast.steps)} steps, "
            f"{len(result.errors)} errors, {len(result.warnings)} warnings"
        )
        return ParseResult(ast=ast, validation=result, dialect=dialect)


def parse(text: str, validate: bool = True) -> ParseResult:
    return AgentParser().parse(text, validate=validate)
