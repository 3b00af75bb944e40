from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Dict, List


@dataclass(frozen=True)
class SourceLocation:
    file: str
    line: int
    column: int


@dataclass(frozen=True)
class InstructionDebug:
    """Metadata describing the provenance of an instruction."""

    location: SourceLocation
    function_name: str


class Opcode(Enum):
    LOAD_CONST = auto()   # LOAD_CONST dst, value
    MOV = auto()          # MOV dst, src
    ADD = auto()
    SUB = auto()
    MUL = auto()
    DIV = auto()
    MOD = auto()
    POW = auto()
    IDIV = auto()
    CONCAT = auto()
    NEG = auto()

    EQ = auto()
    LT = auto()
    LE = auto()
    NOT = auto()

    AND_BIT = auto()
    OR_BIT = auto()
    XOR = auto()
    NOT_BIT = auto()
    SHL = auto()
    SHR = auto()
    LEN = auto()

    IS_NULL = auto()      # IS_NULL dst, src

    MAKE_CELL = auto()    # MAKE_CELL dst, src
    CELL_GET = auto()     # CELL_GET dst, cell
    CELL_SET = auto()     # CELL_SET cell, src
    CLOSURE = auto()      # CLOSURE dst, prototype, cell1, cell2, ...
    BIND_UPVALUE = auto() # BIND_UPVALUE dst_cell, index

    GET_GLOBAL = auto()   # GET_GLOBAL dst, name
    SET_GLOBAL = auto()   # SET_GLOBAL name, src

    VARARG = auto()       # VARARG dst
    VARARG_FIRST = auto() # VARARG_FIRST dst, src
    LIST_GET = auto()     # LIST_GET dst, src, index

    TABLE_NEW = auto()    # TABLE_NEW dst
    TABLE_SET = auto()    # TABLE_SET table, key, value
    TABLE_GET = auto()    # TABLE_GET dst, table, key
    TABLE_EXTEND = auto() # TABLE_EXTEND table, values, start

    JMP = auto()          # JMP label
    JZ = auto()           # JZ reg, label
    JNZ = auto()          # JNZ reg, label
    FOR_PREP = auto()     # FOR_PREP index, limit, step
    LABEL = auto()        # LABEL name

    PARAM = auto()        # PARAM reg
    PARAM_EXPAND = auto() # PARAM_EXPAND reg
    CALL_VALUE = auto()   # CALL_VALUE callee_reg
    ARG = auto()          # ARG dst
    RESULT = auto()       # RESULT dst
    RESULT_LIST = auto()  # RESULT_LIST dst
    RETURN_MULTI = auto() # RETURN_MULTI r1, r2, ...


@dataclass
class Instruction:
    opcode: Opcode
    args: list  # e.g., ['a', 'b'] or ['x', 5]
    debug: InstructionDebug | None = None

    def __str__(self):
        return f"{self.opcode.name} {' '.join(map(str, self.args))}"


@dataclass(eq=False)
class Prototype:
    """Compiled body of one Lua function."""

    name: str
    source: str
    instructions: List[Instruction] = field(default_factory=list)
    labels: Dict[str, int] = field(default_factory=dict)
    line_defined: int = 0
    last_line_defined: int = 0
    num_params: int = 0
    is_vararg: bool = False
    num_upvalues: int = 0

    def index_labels(self) -> None:
        self.labels = {}
        for i, inst in enumerate(self.instructions):
            if inst.opcode == Opcode.LABEL:
                self.labels[inst.args[0]] = i

    def dump(self) -> str:
        lines = [f"function <{self.source}:{self.line_defined}> {self.name}"]
        for i, inst in enumerate(self.instructions):
            lines.append(f"  {i:4d} {inst}")
        return "\n".join(lines)

    def __repr__(self) -> str:  # pragma: no cover - debug helper
        return f"<Prototype {self.name} {self.source}:{self.line_defined}>"


__all__ = ["Instruction", "InstructionDebug", "Opcode", "Prototype", "SourceLocation"]
