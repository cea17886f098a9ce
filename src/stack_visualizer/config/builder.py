from typing import Optional, Tuple

from stack_visualizer.common.types import ByteOrder
from stack_visualizer.core.address_space import AddressSpace, TextSegment
from stack_visualizer.engine.reconciler import ReconciliationEngine
from stack_visualizer.transport.memory import SimulatedMemory, SparseRAM, StackMemory
from stack_visualizer.transport.program import ProgramImage
from stack_visualizer.transport.registers import RegisterFile, SimulatedRegisterFile
from .models import EngineConfig

# @intent:responsibility 構成（Config）に基づいて、セグメント幾何、メモリ、エンジンを生成・接続します。
class EngineBuilder:
    def build_address_space(self, config: EngineConfig) -> AddressSpace:
        stack = config.stack
        return AddressSpace(
            base=stack.base,
            limit=stack.limit,
            word_size=stack.word_size,
            little_endian=stack.byte_order == ByteOrder.LITTLE,
            initial_sp=stack.initial_sp,
        )

    def build_text_segment(self, config: EngineConfig) -> TextSegment:
        return TextSegment(start=config.text.start, end=config.text.end)

    # @intent:responsibility テキストセグメントとスタックセグメントにRAMを割り当てたメモリを生成します。
    def build_memory(self, config: EngineConfig) -> SimulatedMemory:
        stack = config.stack
        memory = SimulatedMemory(word_size=stack.word_size, little_endian=stack.byte_order == ByteOrder.LITTLE)

        text_size = config.text.end - config.text.start + stack.word_size
        memory.register_device(config.text.start, config.text.start + text_size - 1, SparseRAM(text_size))

        # 最上位ワードの全バイトを含める
        stack_end = stack.base + stack.word_size - 1
        memory.register_device(stack.limit, stack_end, SparseRAM(stack_end - stack.limit + 1))
        return memory

    def build_registers(self, config: EngineConfig) -> SimulatedRegisterFile:
        registers = SimulatedRegisterFile()
        registers.load(registers.index_of(config.instruction_set.stack_pointer_register), config.stack.initial_sp)
        return registers

    def build_engine(self, config: EngineConfig, program: ProgramImage,
                     registers: RegisterFile, memory: Optional[StackMemory] = None) -> ReconciliationEngine:
        return ReconciliationEngine(
            address_space=self.build_address_space(config),
            text_segment=self.build_text_segment(config),
            program=program,
            registers=registers,
            memory=memory,
            grid=config.grid,
            instruction_set=config.instruction_set,
        )

    # @intent:responsibility 参照実装のメモリとレジスタファイルを生成し、エンジンをリスナーとして接続します。
    # @intent:rationale 観測範囲はスタックセグメント、スタックポインタ、テキストセグメントの3つです。
    def build_system(self, config: EngineConfig,
                     program: ProgramImage) -> Tuple[ReconciliationEngine, SimulatedMemory, SimulatedRegisterFile]:
        memory = self.build_memory(config)
        registers = self.build_registers(config)
        engine = self.build_engine(config, program, registers, memory)

        stack = config.stack
        memory.add_listener(engine.handle, stack.limit, stack.base + stack.word_size - 1)
        memory.add_listener(engine.handle, config.text.start, config.text.end)
        registers.add_listener(engine.handle, registers.index_of(config.instruction_set.stack_pointer_register))
        return engine, memory, registers
