import yaml
from typing import Any, Dict, Iterable

from stack_visualizer.common.types import ByteOrder
from .models import EngineConfig, GridConfig, InstructionSetConfig, StackSegmentConfig, TextSegmentConfig

class ConfigLoader:
    def load_from_file(self, path: str) -> EngineConfig:
        with open(path, 'r') as f:
            data = yaml.safe_load(f)
        return self.load_from_dict(data or {})

    def load_from_string(self, text: str) -> EngineConfig:
        return self.load_from_dict(yaml.safe_load(text) or {})

    def load_from_dict(self, data: Dict[str, Any]) -> EngineConfig:
        if not isinstance(data, dict):
            raise ValueError("Configuration root must be a mapping.")
        defaults = EngineConfig()

        # Parse Stack Segment
        stack_data = data.get("stack", {})
        stack = StackSegmentConfig(
            base=self._parse_int(stack_data.get("base", defaults.stack.base)),
            limit=self._parse_int(stack_data.get("limit", defaults.stack.limit)),
            initial_sp=self._parse_int(stack_data.get("initial_sp", defaults.stack.initial_sp)),
            word_size=self._parse_int(stack_data.get("word_size", defaults.stack.word_size)),
            byte_order=ByteOrder.parse(stack_data.get("byte_order", defaults.stack.byte_order.value)),
        )

        # Parse Text Segment
        text_data = data.get("text", {})
        text = TextSegmentConfig(
            start=self._parse_int(text_data.get("start", defaults.text.start)),
            end=self._parse_int(text_data.get("end", defaults.text.end)),
        )

        # Parse Grid
        grid_data = data.get("grid", {})
        grid = GridConfig(
            initial_rows=self._parse_int(grid_data.get("initial_rows", defaults.grid.initial_rows)),
            growth_margin=self._parse_int(grid_data.get("growth_margin", defaults.grid.growth_margin)),
            remaining_rows_threshold=self._parse_int(
                grid_data.get("remaining_rows_threshold", defaults.grid.remaining_rows_threshold)
            ),
        )

        # Parse Instruction Set
        isa_data = data.get("instruction_set", {})
        isa_defaults = defaults.instruction_set
        instruction_set = InstructionSetConfig(
            store_mnemonics=self._parse_mnemonics(isa_data.get("store", isa_defaults.store_mnemonics)),
            jump_mnemonics=self._parse_mnemonics(isa_data.get("jump", isa_defaults.jump_mnemonics)),
            linking_jump_mnemonics=self._parse_mnemonics(
                isa_data.get("linking_jump", isa_defaults.linking_jump_mnemonics)
            ),
            register_jump_mnemonics=self._parse_mnemonics(
                isa_data.get("register_jump", isa_defaults.register_jump_mnemonics)
            ),
            stack_pointer_register=isa_data.get("stack_pointer", isa_defaults.stack_pointer_register),
        )

        return EngineConfig(stack=stack, text=text, grid=grid, instruction_set=instruction_set)

    def _parse_int(self, value: Any) -> int:
        if isinstance(value, bool):
            raise ValueError(f"Invalid integer format: {value}")
        if isinstance(value, int):
            return value
        if isinstance(value, str):
            if value.lower().startswith("0x"):
                return int(value, 16)
            return int(value)
        raise ValueError(f"Invalid integer format: {value}")

    def _parse_mnemonics(self, value: Iterable[str]) -> frozenset:
        if isinstance(value, str):
            value = [value]
        return frozenset(str(m).strip().lower() for m in value)
