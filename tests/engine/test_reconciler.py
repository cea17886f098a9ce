# tests/engine/test_reconciler.py
"""
stack_visualizer.engine.reconcilerモジュールの単体テスト。
通知を直接handleに渡し、スロット更新とエンジンの状態を検証します。
"""
import pytest

from stack_visualizer.common.types import AccessOrigin, AccessType
from stack_visualizer.core.address_space import AddressSpace, TextSegment
from stack_visualizer.core.diagnostics import AnomalyKind, StackAnomalyWarning
from stack_visualizer.engine import EventKind, InstructionClass, ReconciliationEngine
from stack_visualizer.transport.memory import SimulatedMemory, SparseRAM
from stack_visualizer.transport.notices import MemoryAccessNotice, RegisterAccessNotice
from stack_visualizer.transport.program import DecodedInstruction, ProgramListing
from stack_visualizer.transport.registers import SimulatedRegisterFile

# @intent:test_suite 再構築エンジンのイベント処理（スタック書き込み、SP書き込み、命令フェッチ）を検証します。

BASE = 0x7FFFEFFC
LIMIT = 0x7FFFE000
TEXT_START = 0x00400000
TEXT_END = 0x004000FC

MAIN = 0x00400000
SUM = 0x00400020

def _program():
    statements = [
        DecodedInstruction(MAIN + 0x00, "addi", (29, 29, -8), "addi $sp, $sp, -8"),
        DecodedInstruction(MAIN + 0x04, "sw", (31, 4, 29), "sw $ra, 4($sp)"),
        DecodedInstruction(MAIN + 0x08, "jal", (SUM >> 2,), "jal sum"),
        DecodedInstruction(MAIN + 0x0C, "j", (MAIN >> 2,), "j main"),
        DecodedInstruction(MAIN + 0x10, "jal", (0x00400080 >> 2,), "jal 0x00400080"),
        DecodedInstruction(SUM + 0x00, "addi", (29, 29, -8), "addi $sp, $sp, -8"),
        DecodedInstruction(SUM + 0x04, "sw", (16, 0, 29), "sw $s0, 0($sp)"),
        DecodedInstruction(SUM + 0x08, "jr", (31,), "jr $ra"),
    ]
    return ProgramListing(statements, {"main": MAIN, "sum": SUM})

@pytest.fixture
def memory():
    mem = SimulatedMemory(word_size=4, little_endian=True)
    mem.register_device(TEXT_START, TEXT_END + 3, SparseRAM(TEXT_END + 4 - TEXT_START))
    mem.register_device(LIMIT, BASE + 3, SparseRAM(BASE + 4 - LIMIT))
    return mem

@pytest.fixture
def registers():
    regs = SimulatedRegisterFile()
    regs.load(29, BASE)
    return regs

@pytest.fixture
def engine(memory, registers):
    return ReconciliationEngine(
        address_space=AddressSpace(base=BASE, limit=LIMIT, word_size=4, little_endian=True),
        text_segment=TextSegment(TEXT_START, TEXT_END),
        program=_program(),
        registers=registers,
        memory=memory,
    )

def write(address, value, length=4, origin=AccessOrigin.PROGRAM):
    return MemoryAccessNotice(address, value, AccessType.WRITE, length, origin)

def store(memory, engine, address, value, length=4):
    """
    シミュレータと同様に、メモリを更新してから書き込み通知を配送します。
    """
    memory.load(address, value, length)
    return engine.handle(write(address, value, length))

def fetch(address):
    return MemoryAccessNotice(address, 0, AccessType.READ, 4)

def sp_write(value, origin=AccessOrigin.PROGRAM):
    return RegisterAccessNotice("$sp", value, AccessType.WRITE, origin)

class TestClassification:
    # @intent:test_case_classify 通知がイベント種別に正しく分類されることを検証します。
    def test_classify(self, engine):
        assert engine.classify(write(BASE - 4, 1)) is EventKind.STACK_WRITE
        assert engine.classify(sp_write(BASE - 4)) is EventKind.POINTER_WRITE
        assert engine.classify(fetch(MAIN)) is EventKind.INSTRUCTION_FETCH
        assert engine.classify(write(MAIN, 1)) is EventKind.IGNORED # テキストへの書き込み
        assert engine.classify(MemoryAccessNotice(BASE, 0, AccessType.READ)) is EventKind.IGNORED
        assert engine.classify(RegisterAccessNotice("$t0", 1, AccessType.WRITE)) is EventKind.IGNORED

    # @intent:test_case_origin デバッガ由来の通知は無視されることを検証します。
    def test_debugger_origin_ignored(self, engine):
        assert engine.classify(write(BASE - 4, 1, origin=AccessOrigin.DEBUGGER)) is EventKind.IGNORED
        assert engine.handle(sp_write(BASE - 40, origin=AccessOrigin.DEBUGGER)) == []
        assert engine.current_pointer_row == 0

    def test_classify_instruction(self, engine):
        program = _program()
        assert engine.classify_instruction(program.statement_at(MAIN + 0x04)) is InstructionClass.STORE
        assert engine.classify_instruction(program.statement_at(MAIN + 0x08)) is InstructionClass.LINKING_JUMP
        assert engine.classify_instruction(program.statement_at(MAIN + 0x0C)) is InstructionClass.JUMP
        assert engine.classify_instruction(program.statement_at(SUM + 0x08)) is InstructionClass.REGISTER_JUMP
        assert engine.classify_instruction(program.statement_at(MAIN)) is InstructionClass.OTHER

class TestInitialState:
    # @intent:test_case_init 既定で30行が確保され、SPは初期SPの行を指すことを検証します。
    def test_initial_rows_and_pointer(self, engine):
        assert engine.row_count == 30
        assert engine.current_pointer_row == 0
        assert engine.current_pointer_column == 4
        assert engine.get_slot(0).address == BASE
        assert engine.get_slot(1).address == BASE - 4

    # @intent:test_case_init メモリから再導出されたスロットは観測済みとなることを検証します。
    def test_initial_refresh_reads_memory(self, memory, registers):
        memory.load(BASE - 4, 0xCAFEBABE, 4)
        engine = ReconciliationEngine(
            AddressSpace(base=BASE, limit=LIMIT), TextSegment(TEXT_START, TEXT_END),
            _program(), registers, memory,
        )
        assert engine.get_slot(1).bytes == [0xBE, 0xBA, 0xFE, 0xCA]
        assert engine.get_slot(1).is_observed

    # @intent:test_case_no_memory メモリが与えられない場合、スロットは未観測のまま残ることを検証します。
    def test_without_memory(self, registers):
        engine = ReconciliationEngine(
            AddressSpace(base=BASE, limit=LIMIT), TextSegment(TEXT_START, TEXT_END), _program(), registers,
        )
        assert engine.get_slot(0).bytes == [None] * 4
        updates = engine.handle(write(BASE - 4, 0x11223344))
        assert engine.get_slot(1).bytes == [0x44, 0x33, 0x22, 0x11]
        assert updates[0].row == 1

    # @intent:test_case_columns 列定義がバイトビューから提供されることを検証します。
    def test_column_names(self, engine):
        titles = [c.title for c in engine.column_names()]
        assert titles[0] == "Address"
        assert titles[-2:] == ["Stored Reg", "Call Layout"]

class TestStackWrite:
    # @intent:test_case_scenario 0x7FFFEFF8への0x11223344の書き込みが行1に [0x44,0x33,0x22,0x11] として配置されることを検証します。
    def test_word_write_scenario(self, engine, memory):
        updates = store(memory, engine, 0x7FFFEFF8, 0x11223344)
        assert len(updates) == 1
        update = updates[0]
        assert update.row == 1
        assert update.address == 0x7FFFEFF8
        assert update.raw_value == 0x11223344
        assert engine.get_slot(1).bytes == [0x44, 0x33, 0x22, 0x11]
        assert engine.get_slot_columns(1) == [0x11, 0x22, 0x33, 0x44]
        assert set(update.columns) == {1, 2, 3, 4, 5, 6}

    # @intent:test_case_partial ハーフワードの書き込みは該当する2バイトの列のみを更新することを検証します。
    def test_half_word_write(self, engine, memory):
        memory.load(0x7FFFEFF6, 0xBEEF, 2)
        updates = engine.handle(write(0x7FFFEFF6, 0xBEEF, length=2))
        assert updates[0].row == 2
        assert updates[0].columns[:2] == (2, 1)
        assert engine.get_slot(2).bytes[2:] == [0xEF, 0xBE]

    # @intent:test_case_register ストア命令のフェッチでステージされたレジスタ名が次の書き込みに付与されることを検証します。
    def test_staged_register_name(self, engine):
        engine.handle(fetch(MAIN + 0x04)) # sw $ra, 4($sp)
        assert engine.pending_register_name == "$ra"
        updates = engine.handle(write(BASE - 4, 0x0040000C))
        assert updates[0].stored_register_name == "$ra"
        assert engine.get_slot(1).stored_register_name == "$ra"
        assert engine.pending_register_name is None

    # @intent:test_case_register 注釈の無い書き込みは以前の格納レジスタ名を上書きして消去することを検証します。
    def test_unannotated_write_clears_register_name(self, engine):
        engine.handle(fetch(MAIN + 0x04))
        engine.handle(write(BASE - 4, 1))
        engine.handle(write(BASE - 4, 2))
        assert engine.get_slot(1).stored_register_name is None

    # @intent:test_case_expiry ステージされたレジスタ名は次の命令フェッチで失効することを検証します。
    def test_staged_register_expires_on_next_fetch(self, engine):
        engine.handle(fetch(MAIN + 0x04))
        engine.handle(fetch(MAIN)) # スタック外へのストアの後の次の命令
        assert engine.pending_register_name is None
        engine.handle(write(BASE - 4, 1))
        assert engine.get_slot(1).stored_register_name is None

    # @intent:test_case_growth グリッド外の書き込みで行が余裕分を含めて伸長されることを検証します。
    def test_write_beyond_grid_grows(self, engine):
        address = BASE - 4 * 40
        updates = engine.handle(write(address, 0xAA))
        assert updates[0].row == 40
        assert engine.row_count == 40 - 30 + 10 + 30
        assert engine.get_slot(40).address == address

    # @intent:test_case_oob セグメント外の書き込みは診断となり、イベントが破棄されることを検証します。
    def test_out_of_segment_write(self, engine):
        with pytest.warns(StackAnomalyWarning):
            assert engine.handle(write(LIMIT - 4, 1)) == []
        diagnostics = engine.get_and_clear_diagnostics()
        assert [d.kind for d in diagnostics] == [AnomalyKind.OUT_OF_SEGMENT]
        assert diagnostics[0].address == LIMIT - 4

    # @intent:test_case_above 初期SPより上位への書き込みはABOVE_INITIAL_TOPとして報告されることを検証します。
    def test_above_initial_top_write(self, memory, registers):
        engine = ReconciliationEngine(
            AddressSpace(base=BASE, limit=LIMIT, initial_sp=BASE - 8), TextSegment(TEXT_START, TEXT_END),
            _program(), registers, memory,
        )
        with pytest.warns(StackAnomalyWarning):
            assert engine.handle(write(BASE, 1)) == []
        assert [d.kind for d in engine.get_and_clear_diagnostics()] == [AnomalyKind.ABOVE_INITIAL_TOP]
        # エンジンは引き続き使用可能
        assert engine.handle(write(BASE - 8, 1))[0].row == 0

    # @intent:test_case_consume 破棄された書き込みでもステージされた注釈は消費されることを検証します。
    def test_rejected_write_consumes_staged_values(self, engine):
        engine.handle(fetch(MAIN + 0x04))
        with pytest.warns(StackAnomalyWarning):
            engine.handle(write(LIMIT - 4, 1))
        assert engine.pending_register_name is None

class TestStackPointerWrite:
    # @intent:test_case_move SPの移動で行と列が再計算されることを検証します。
    def test_pointer_moves(self, engine):
        assert engine.handle(sp_write(BASE - 8)) == []
        assert engine.current_pointer_row == 2
        assert engine.current_pointer_column == 4
        engine.handle(sp_write(BASE - 10))
        assert engine.current_pointer_row == 3
        assert engine.current_pointer_column == 2

    # @intent:test_case_pop SPのポップでnew_row+1..old_rowの注釈が消去されることを検証します。
    def test_pop_clears_annotations(self, engine):
        engine.handle(sp_write(BASE - 16))
        for row in range(1, 5):
            engine.get_slot(row).stored_register_name = "$s0"
            engine.get_slot(row).frame_label = "sum (1)"
        updates = engine.handle(sp_write(BASE - 4))
        assert [u.row for u in updates] == [2, 3, 4]
        assert all(u.columns == (5, 6) for u in updates)
        assert engine.get_slot(1).stored_register_name == "$s0"
        for row in (2, 3, 4):
            assert engine.get_slot(row).stored_register_name is None
            assert engine.get_slot(row).frame_label is None

    # @intent:test_case_bytes_kept ポップされた行のバイト値は消去されないことを検証します。
    def test_pop_keeps_bytes(self, engine, memory):
        engine.handle(sp_write(BASE - 8))
        store(memory, engine, BASE - 8, 0x01020304)
        engine.handle(sp_write(BASE))
        assert engine.get_slot(2).bytes == [0x04, 0x03, 0x02, 0x01]

    # @intent:test_case_proactive SP行の下に閾値分の行が残らない場合に先行して伸長されることを検証します。
    def test_proactive_growth(self, engine):
        engine.handle(sp_write(BASE - 4 * 27))
        assert engine.row_count == 30 + (27 + 5 - 1) - 30 + 10

    # @intent:test_case_oob セグメント外へのSP書き込みは診断となり、SPは変化しないことを検証します。
    def test_pointer_out_of_segment(self, engine):
        engine.handle(sp_write(BASE - 8))
        with pytest.warns(StackAnomalyWarning):
            assert engine.handle(sp_write(0x10000000)) == []
        assert engine.current_pointer_row == 2
        assert engine.get_and_clear_diagnostics()[0].kind is AnomalyKind.OUT_OF_SEGMENT

class TestCallTracking:
    # @intent:test_case_frame リンク付きジャンプでステージされたラベルが次のスタック書き込みに付与されることを検証します。
    def test_frame_label_on_first_push(self, engine):
        engine.handle(fetch(MAIN + 0x08)) # jal sum
        assert engine.pending_frame_label == "sum (1)"
        engine.handle(fetch(SUM)) # addi
        assert engine.pending_frame_label == "sum (1)"
        engine.handle(fetch(SUM + 0x04)) # sw $s0
        updates = engine.handle(write(BASE - 8, 7))
        assert updates[0].frame_label == "sum (1)"
        assert updates[0].stored_register_name == "$s0"
        assert engine.pending_frame_label is None
        # 2回目の書き込みにはラベルは付与されない
        engine.handle(write(BASE - 12, 8))
        assert engine.get_slot(3).frame_label is None

    # @intent:test_case_scenario jal sum から jr $ra への復帰でシャドウスタックの深さが元に戻り、sumの回数が0になることを検証します。
    def test_call_return_scenario(self, engine, registers):
        depth = engine.tracker.depth
        engine.handle(fetch(MAIN + 0x08)) # jal sum
        registers.load(31, MAIN + 0x0C)
        assert engine.tracker.depth == depth + 1
        engine.handle(fetch(SUM + 0x08)) # jr $ra
        assert engine.tracker.depth == depth
        assert engine.tracker.active_count("sum") == 0
        assert engine.get_and_clear_diagnostics() == []

    # @intent:test_case_leaf フレームを確保しないサブルーチンから復帰すると、ステージされたラベルは破棄されることを検証します。
    def test_return_drops_unconsumed_label(self, engine, registers):
        engine.handle(fetch(MAIN + 0x08))
        registers.load(31, MAIN + 0x0C)
        engine.handle(fetch(SUM + 0x08))
        assert engine.pending_frame_label is None
        engine.handle(write(BASE - 4, 1))
        assert engine.get_slot(1).frame_label is None

    # @intent:test_case_unbalanced 呼び出しの無い復帰は診断のみで状態を壊さないことを検証します。
    def test_unbalanced_return(self, engine, registers):
        registers.load(31, MAIN + 0x0C)
        with pytest.warns(StackAnomalyWarning):
            assert engine.handle(fetch(SUM + 0x08)) == []
        kinds = {d.kind for d in engine.get_and_clear_diagnostics()}
        assert AnomalyKind.UNBALANCED_RETURN in kinds
        assert engine.tracker.depth == 0

    # @intent:test_case_unresolved 復帰先の1ワード手前がリンク付きジャンプでない場合はUNRESOLVED_RETURNとなることを検証します。
    def test_unresolved_return_no_call(self, engine, registers):
        engine.handle(fetch(MAIN + 0x08))
        registers.load(31, MAIN + 0x04) # 手前はaddi
        with pytest.warns(StackAnomalyWarning):
            engine.handle(fetch(SUM + 0x08))
        assert [d.kind for d in engine.get_and_clear_diagnostics()] == [AnomalyKind.UNRESOLVED_RETURN]
        assert engine.tracker.depth == 1

    def test_unresolved_return_outside_text(self, engine, registers):
        registers.load(31, 0)
        with pytest.warns(StackAnomalyWarning):
            engine.handle(fetch(SUM + 0x08))
        assert [d.kind for d in engine.get_and_clear_diagnostics()] == [AnomalyKind.UNRESOLVED_RETURN]

    # @intent:test_case_symbol ラベルの無いジャンプ先は16進アドレスをラベルとして使用することを検証します。
    def test_unresolved_symbol_falls_back_to_hex(self, engine):
        with pytest.warns(StackAnomalyWarning):
            engine.handle(fetch(MAIN + 0x10))
        assert engine.pending_frame_label == "0x00400080 (1)"
        assert [d.kind for d in engine.get_and_clear_diagnostics()] == [AnomalyKind.UNRESOLVED_SYMBOL]

    # @intent:test_case_jump 無条件ジャンプと未知の命令は状態を変化させないことを検証します。
    def test_plain_jump_and_missing_statement(self, engine):
        assert engine.handle(fetch(MAIN + 0x0C)) == []
        assert engine.handle(fetch(TEXT_END)) == []
        assert engine.tracker.depth == 0
        assert engine.pending_frame_label is None

    # @intent:test_case_overwrite ラベルの付いたスロットを注釈なしで書き換えると、フレームラベルも消去されることを検証します。
    def test_rewrite_clears_frame_label(self, engine):
        engine.handle(fetch(MAIN + 0x08)) # jal sum
        engine.handle(write(BASE - 8, 7))
        assert engine.get_slot(2).frame_label == "sum (1)"
        updates = engine.handle(write(BASE - 8, 9))
        assert updates[0].frame_label is None
        assert engine.get_slot(2).frame_label is None
        assert engine.get_slot(2).stored_register_name is None

class TestMalformedInstructions:
    """
    オペランドが欠落した、または範囲外の命令のフェッチ。
    """
    @pytest.fixture
    def malformed_engine(self, memory, registers):
        listing = ProgramListing(
            [
                DecodedInstruction(MAIN + 0x00, "sw", ()),
                DecodedInstruction(MAIN + 0x04, "jal", ()),
                DecodedInstruction(MAIN + 0x08, "sw", (40, 0, 29)),
                DecodedInstruction(MAIN + 0x0C, "jr", ()),
                DecodedInstruction(MAIN + 0x10, "jr", (31,)),
                DecodedInstruction(MAIN + 0x14, "sw", (31, 0, 29)),
            ],
            {"main": MAIN},
        )
        return ReconciliationEngine(
            AddressSpace(base=BASE, limit=LIMIT), TextSegment(TEXT_START, TEXT_END), listing, registers, memory,
        )

    # @intent:test_case_store オペランドの無いストア命令は診断となり、例外を送出しないことを検証します。
    def test_store_without_operands(self, malformed_engine):
        with pytest.warns(StackAnomalyWarning):
            assert malformed_engine.handle(fetch(MAIN)) == []
        diagnostics = malformed_engine.get_and_clear_diagnostics()
        assert [d.kind for d in diagnostics] == [AnomalyKind.MALFORMED_INSTRUCTION]
        assert diagnostics[0].address == MAIN
        assert malformed_engine.pending_register_name is None

    # @intent:test_case_store 範囲外のレジスタ番号を持つストア命令は診断となることを検証します。
    def test_store_with_unknown_register(self, malformed_engine):
        with pytest.warns(StackAnomalyWarning):
            malformed_engine.handle(fetch(MAIN + 0x08))
        assert [d.kind for d in malformed_engine.get_and_clear_diagnostics()] == [AnomalyKind.MALFORMED_INSTRUCTION]

    # @intent:test_case_call オペランドの無いリンク付きジャンプはトラッカーを変更しないことを検証します。
    def test_linking_jump_without_target(self, malformed_engine):
        with pytest.warns(StackAnomalyWarning):
            assert malformed_engine.handle(fetch(MAIN + 0x04)) == []
        assert [d.kind for d in malformed_engine.get_and_clear_diagnostics()] == [AnomalyKind.MALFORMED_INSTRUCTION]
        assert malformed_engine.tracker.depth == 0
        assert malformed_engine.pending_frame_label is None

    # @intent:test_case_return 不正なレジスタジャンプ、および不正な呼び出し命令への復帰はUNRESOLVED_RETURNとなることを検証します。
    def test_register_jump_failures(self, malformed_engine, registers):
        with pytest.warns(StackAnomalyWarning):
            malformed_engine.handle(fetch(MAIN + 0x0C))
        registers.load(31, MAIN + 0x08) # 手前はオペランドの無いjal
        with pytest.warns(StackAnomalyWarning):
            malformed_engine.handle(fetch(MAIN + 0x10))
        kinds = [d.kind for d in malformed_engine.get_and_clear_diagnostics()]
        assert kinds == [AnomalyKind.UNRESOLVED_RETURN, AnomalyKind.UNRESOLVED_RETURN]
        assert malformed_engine.tracker.depth == 0

    # @intent:test_case_usable 不正な命令の後もエンジンは引き続き使用可能であることを検証します。
    def test_engine_usable_after_malformed_fetch(self, malformed_engine):
        with pytest.warns(StackAnomalyWarning):
            malformed_engine.handle(fetch(MAIN))
        malformed_engine.handle(fetch(MAIN + 0x14))
        updates = malformed_engine.handle(write(BASE - 4, 1))
        assert updates[0].stored_register_name == "$ra"

class TestSessionControl:
    # @intent:test_case_reset 完全リセットでトラッカー、注釈、ステージされた値が消去され、SPが再同期されることを検証します。
    def test_full_reset(self, engine, memory, registers):
        engine.handle(fetch(MAIN + 0x08))
        engine.handle(fetch(SUM + 0x04))
        store(memory, engine, BASE - 4, 5)
        engine.handle(sp_write(BASE - 4))
        assert engine.get_slot(1).frame_label == "sum (1)"
        registers.load(29, BASE)
        engine.reset()
        assert engine.tracker.depth == 0
        assert engine.pending_register_name is None
        assert engine.pending_frame_label is None
        assert engine.get_slot(1).stored_register_name is None
        assert engine.get_slot(1).frame_label is None
        assert engine.current_pointer_row == 0
        # メモリから再導出される
        assert engine.get_slot(1).bytes == [5, 0, 0, 0]

    # @intent:test_case_reset 部分リセットではコールスタックの追跡が維持されることを検証します。
    def test_partial_reset_keeps_tracker(self, engine, registers):
        engine.handle(fetch(MAIN + 0x08))
        registers.load(29, BASE - 12)
        engine.reset(full=False)
        assert engine.tracker.depth == 1
        assert engine.current_pointer_row == 3

    # @intent:test_case_resync resyncでシャドウスタックとステージされた値が消去されることを検証します。
    def test_resync(self, engine):
        engine.handle(fetch(MAIN + 0x08))
        engine.handle(fetch(SUM + 0x04))
        engine.resync()
        assert engine.tracker.depth == 0
        assert engine.tracker.active_count("sum") == 0
        assert engine.pending_frame_label is None
        assert engine.pending_register_name is None

    def test_grow_to(self, engine, memory):
        memory.load(BASE - 4 * 45, 0x12345678, 4)
        assert engine.grow_to(50) == 20
        assert engine.row_count == 50
        assert engine.get_slot(45).bytes == [0x78, 0x56, 0x34, 0x12]
        assert engine.grow_to(10) == 0

    # @intent:test_case_unset_sp 未設定（0）のSPではinitial_spが採用されることを検証します。
    def test_unset_stack_pointer_uses_initial_sp(self, memory):
        engine = ReconciliationEngine(
            AddressSpace(base=BASE, limit=LIMIT), TextSegment(TEXT_START, TEXT_END),
            _program(), SimulatedRegisterFile(), memory,
        )
        assert engine.current_pointer_row == 0
