from dataclasses import dataclass, field
from typing import FrozenSet

from stack_visualizer.common.types import ByteOrder

# MARS既定のメモリ構成
MARS_STACK_BASE = 0x7FFFFFFC
MARS_STACK_LIMIT = 0x10040000
MARS_INITIAL_SP = 0x7FFFEFFC
MARS_TEXT_START = 0x00400000
MARS_TEXT_END = 0x0FFFFFFC

@dataclass
class StackSegmentConfig:
    base: int = MARS_STACK_BASE
    limit: int = MARS_STACK_LIMIT
    initial_sp: int = MARS_INITIAL_SP
    word_size: int = 4
    byte_order: ByteOrder = ByteOrder.LITTLE

@dataclass
class TextSegmentConfig:
    start: int = MARS_TEXT_START
    end: int = MARS_TEXT_END

@dataclass
class GridConfig:
    initial_rows: int = 30
    growth_margin: int = 10  # 範囲外アクセスで伸長する際の余裕行数
    remaining_rows_threshold: int = 5  # SP行の下に最低限残す行数

@dataclass
class InstructionSetConfig:
    store_mnemonics: FrozenSet[str] = frozenset({"sw", "sh", "sb", "sc"})
    jump_mnemonics: FrozenSet[str] = frozenset({"j"})
    linking_jump_mnemonics: FrozenSet[str] = frozenset({"jal"})
    register_jump_mnemonics: FrozenSet[str] = frozenset({"jr"})
    stack_pointer_register: str = "$sp"

@dataclass
class EngineConfig:
    stack: StackSegmentConfig = field(default_factory=StackSegmentConfig)
    text: TextSegmentConfig = field(default_factory=TextSegmentConfig)
    grid: GridConfig = field(default_factory=GridConfig)
    instruction_set: InstructionSetConfig = field(default_factory=InstructionSetConfig)
