# stack_visualizer/engine/reconciler.py
"""
Engine Layer (再構築エンジン)

シミュレータから配送されるメモリ書き込み・スタックポインタ書き込み・命令フェッチの通知を受け取り、
SlotGrid、ByteView、CallStackTrackerを駆動してスロットの更新情報を生成するファサードです。

エンジンはシングルスレッドかつ同期的に動作します。通知の処理中に自身が行う読み出しは、
全て通知を発生させない経路（peek_*, statement_at, read_register）を使用します。
"""
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from stack_visualizer.common.types import AccessOrigin, ColumnInfo, SlotBytes
from stack_visualizer.config.models import GridConfig, InstructionSetConfig
from stack_visualizer.core.address_space import AddressSpace, TextSegment
from stack_visualizer.core.byte_view import ByteView
from stack_visualizer.core.call_tracker import CallStackTracker
from stack_visualizer.core.diagnostics import AnomalyKind, Diagnostic, DiagnosticLog
from stack_visualizer.core.slot_grid import AboveInitialTopError, SegmentError, SlotGrid, StackSlot
from stack_visualizer.transport.memory import StackMemory
from stack_visualizer.transport.notices import AccessNotice, MemoryAccessNotice, RegisterAccessNotice
from stack_visualizer.transport.program import DecodedInstruction, ProgramImage
from stack_visualizer.transport.registers import RegisterFile

# @intent:responsibility エンジンが処理するイベントの種別を定義します。
class EventKind(Enum):
    STACK_WRITE = "STACK_WRITE"                 # スタックセグメントへのメモリ書き込み
    POINTER_WRITE = "POINTER_WRITE"             # スタックポインタへの書き込み
    INSTRUCTION_FETCH = "INSTRUCTION_FETCH"     # テキストセグメントからの命令フェッチ
    IGNORED = "IGNORED"

# @intent:responsibility フェッチされた命令の分類を定義します。
class InstructionClass(Enum):
    STORE = "STORE"
    JUMP = "JUMP"
    LINKING_JUMP = "LINKING_JUMP"
    REGISTER_JUMP = "REGISTER_JUMP"
    OTHER = "OTHER"

# @intent:responsibility プレゼンテーション層へ渡すスロットの更新情報を記録します。
@dataclass(frozen=True) # 不変データ構造
class SlotUpdate:
    """
    1行分の更新。columnsは変更された表示列の番号です。
    """
    row: int
    address: int
    columns: Tuple[int, ...]
    raw_value: Optional[int] = None
    stored_register_name: Optional[str] = None
    frame_label: Optional[str] = None

# @intent:responsibility 通知を受け取りスタックの構造化ビューを逐次再構築します。
# @intent:rationale 可変状態（グリッド、トラッカー、ステージされた注釈）は全てこのインスタンスが保持し、グローバル状態は持ちません。
class ReconciliationEngine:
    """
    スタック状態の再構築エンジン。セッション毎に1つ生成され、リセット時はクリアして再利用されます。
    """
    def __init__(self, address_space: AddressSpace, text_segment: TextSegment,
                 program: ProgramImage, registers: RegisterFile,
                 memory: Optional[StackMemory] = None,
                 grid: Optional[GridConfig] = None,
                 instruction_set: Optional[InstructionSetConfig] = None):
        self._space = address_space
        self._text = text_segment
        self._program = program
        self._registers = registers
        self._memory = memory
        self._grid_config = grid or GridConfig()
        self._isa = instruction_set or InstructionSetConfig()

        self._diagnostics = DiagnosticLog()
        self._byte_view = ByteView(address_space.word_size, address_space.little_endian)
        self._grid = SlotGrid(
            address_space,
            initial_rows=self._grid_config.initial_rows,
            growth_margin=self._grid_config.growth_margin,
            first_byte_column=self._byte_view.first_byte_column,
        )
        self._tracker = CallStackTracker(self._diagnostics)
        self._sp_index = registers.index_of(self._isa.stack_pointer_register)

        # 次のスタック書き込みで消費される注釈
        self._pending_register: Optional[str] = None
        self._pending_frame_label: Optional[str] = None

        self._pointer_row = 0
        self._pointer_column = self._byte_view.last_byte_column
        self.refresh()
        self._sync_pointer()

    # --- 参照用プロパティ ---

    @property
    def address_space(self) -> AddressSpace:
        return self._space

    @property
    def byte_view(self) -> ByteView:
        return self._byte_view

    @property
    def tracker(self) -> CallStackTracker:
        return self._tracker

    @property
    def row_count(self) -> int:
        return self._grid.row_count

    @property
    def current_pointer_row(self) -> int:
        return self._pointer_row

    @property
    def current_pointer_column(self) -> int:
        return self._pointer_column

    @property
    def pending_register_name(self) -> Optional[str]:
        return self._pending_register

    @property
    def pending_frame_label(self) -> Optional[str]:
        return self._pending_frame_label

    def get_slot(self, row: int) -> StackSlot:
        return self._grid.slot(row)

    def get_slot_columns(self, row: int) -> SlotBytes:
        """
        指定行のバイト値を表示列の左から右への順に返します。
        """
        return self._byte_view.columns(self._grid.slot(row).bytes)

    def column_names(self) -> List[ColumnInfo]:
        return self._byte_view.column_names()

    # @intent:responsibility 記録された診断を取得し、クリアします。
    def get_and_clear_diagnostics(self) -> List[Diagnostic]:
        return self._diagnostics.get_and_clear()

    # --- イベント処理 ---

    # @intent:responsibility 通知をイベント種別に分類します。
    def classify(self, notice: AccessNotice) -> EventKind:
        # プログラム実行以外（デバッガからの編集など）の通知は対象外
        if notice.origin is not AccessOrigin.PROGRAM:
            return EventKind.IGNORED
        if isinstance(notice, RegisterAccessNotice):
            if notice.is_write and notice.register_name == self._isa.stack_pointer_register:
                return EventKind.POINTER_WRITE
            return EventKind.IGNORED
        if self._text.contains(notice.address):
            return EventKind.IGNORED if notice.is_write else EventKind.INSTRUCTION_FETCH
        return EventKind.STACK_WRITE if notice.is_write else EventKind.IGNORED

    def classify_instruction(self, statement: DecodedInstruction) -> InstructionClass:
        mnemonic = statement.mnemonic.lower()
        if mnemonic in self._isa.store_mnemonics:
            return InstructionClass.STORE
        if mnemonic in self._isa.linking_jump_mnemonics:
            return InstructionClass.LINKING_JUMP
        if mnemonic in self._isa.register_jump_mnemonics:
            return InstructionClass.REGISTER_JUMP
        if mnemonic in self._isa.jump_mnemonics:
            return InstructionClass.JUMP
        return InstructionClass.OTHER

    # @intent:responsibility 単一の通知を処理し、生じたスロット更新のリストを返します。
    # @intent:post-condition 異常が発生しても例外は送出されず、診断として記録された上でイベントは破棄されます。
    def handle(self, notice: AccessNotice) -> List[SlotUpdate]:
        kind = self.classify(notice)
        if kind is EventKind.STACK_WRITE:
            return self._on_stack_write(notice)
        if kind is EventKind.POINTER_WRITE:
            return self._on_pointer_write(notice)
        if kind is EventKind.INSTRUCTION_FETCH:
            return self._on_instruction_fetch(notice)
        return []

    def _on_stack_write(self, notice: MemoryAccessNotice) -> List[SlotUpdate]:
        register_name, self._pending_register = self._pending_register, None
        frame_label, self._pending_frame_label = self._pending_frame_label, None

        try:
            targets = [(self._grid.row_for(notice.address + i), (notice.address + i) % self._space.word_size)
                       for i in range(notice.length)]
        except SegmentError as err:
            self._report_segment_error(err)
            return []

        self._grow(lambda: self._grid.ensure_rows(max(row for row, _ in targets)))

        touched: Dict[int, List[int]] = {}
        for (row, offset), value in zip(targets, self._byte_view.decompose(notice.value, notice.length)):
            self._grid.slot(row).bytes[offset] = value
            touched.setdefault(row, []).append(self._byte_view.byte_column_for(offset))

        main_row = targets[0][0]
        slot = self._grid.slot(main_row)
        # 注釈はステージされていなければNoneで上書きされる
        slot.stored_register_name = register_name
        slot.frame_label = frame_label

        self._refresh_rows(touched.keys())

        updates = []
        for row, columns in touched.items():
            current = self._grid.slot(row)
            if row == main_row:
                columns = columns + [self._byte_view.stored_register_column, self._byte_view.frame_label_column]
            updates.append(SlotUpdate(
                row=row,
                address=current.address,
                columns=tuple(columns),
                raw_value=notice.value,
                stored_register_name=current.stored_register_name,
                frame_label=current.frame_label,
            ))
        return updates

    # @intent:responsibility SPの移動に追従し、ポップされた行の注釈を消去します。
    def _on_pointer_write(self, notice: RegisterAccessNotice) -> List[SlotUpdate]:
        try:
            row = self._grid.row_for(notice.value)
            column = self._grid.column_for(notice.value)
        except SegmentError as err:
            self._report_segment_error(err)
            return []

        old_row = self._pointer_row
        self._pointer_row, self._pointer_column = row, column
        self._grow(lambda: self._grid.grow_if_near(row, self._grid_config.remaining_rows_threshold))

        annotation_columns = (self._byte_view.stored_register_column, self._byte_view.frame_label_column)
        return [
            SlotUpdate(row=cleared, address=self._grid.address_for(cleared), columns=annotation_columns)
            for cleared in self._grid.clear_annotations(row + 1, old_row)
        ]

    def _on_instruction_fetch(self, notice: MemoryAccessNotice) -> List[SlotUpdate]:
        # 前の命令でステージされたレジスタ名は、その命令の書き込みがスタック外だった場合に残るため失効させる
        self._pending_register = None

        statement = self._program.statement_at(notice.address)
        if statement is None:
            # プログラムが終了サービスを呼ばずに末尾を越えて実行された場合
            return []

        instruction_class = self.classify_instruction(statement)
        try:
            if instruction_class is InstructionClass.STORE:
                self._pending_register = self._registers.register_name(statement.operand(0))
            elif instruction_class is InstructionClass.LINKING_JUMP:
                self._on_call(statement)
            elif instruction_class is InstructionClass.REGISTER_JUMP:
                self._on_return(statement)
        except IndexError as err:
            # オペランドの欠落や範囲外のレジスタ番号を持つ命令は、このフェッチのみを破棄する
            kind = (AnomalyKind.UNRESOLVED_RETURN if instruction_class is InstructionClass.REGISTER_JUMP
                    else AnomalyKind.MALFORMED_INSTRUCTION)
            self._diagnostics.report(kind, str(err), statement.address)
        return []

    def _on_call(self, statement: DecodedInstruction) -> None:
        label = self._label_for(statement.target_address(self._space.word_size))
        self._pending_frame_label = self._tracker.on_call(statement.address, label)

    # @intent:responsibility レジスタジャンプをサブルーチンからの復帰として解釈します。
    # @intent:rationale 戻りアドレスにはjal実行時のPC+ワード長が格納されているため、呼び出し命令はその1ワード手前にあります。
    # @intent:post-condition 命令のオペランドが不正な場合はIndexErrorを送出し、トラッカーは変更されません。
    def _on_return(self, statement: DecodedInstruction) -> None:
        word_size = self._space.word_size
        return_address = self._registers.read_register(statement.operand(0))

        call_site = return_address - word_size
        if not self._text.contains(call_site):
            self._diagnostics.report(
                AnomalyKind.UNRESOLVED_RETURN,
                f"Return target {return_address:#010x} is outside the text segment.",
                call_site,
            )
            return

        call = self._program.statement_at(call_site)
        if call is None or self.classify_instruction(call) is not InstructionClass.LINKING_JUMP:
            self._diagnostics.report(
                AnomalyKind.UNRESOLVED_RETURN,
                f"No subroutine call found at {call_site:#010x} for return from {statement.address:#010x}.",
                call_site,
            )
            return

        label = self._label_for(call.target_address(word_size))
        self._tracker.on_return(call_site, label)
        # ラベルが未消費のまま復帰した場合、呼び出し先はフレームを確保しなかった
        self._pending_frame_label = None

    def _label_for(self, address: int) -> str:
        label = self._program.label_at(address)
        if label is None:
            self._diagnostics.report(
                AnomalyKind.UNRESOLVED_SYMBOL, f"Error translating address {address:#010x} to label.", address
            )
            return f"{address:#010x}"
        return label

    def _report_segment_error(self, err: SegmentError) -> None:
        kind = AnomalyKind.ABOVE_INITIAL_TOP if isinstance(err, AboveInitialTopError) else AnomalyKind.OUT_OF_SEGMENT
        self._diagnostics.report(kind, str(err), err.address)

    # --- 行の伸長と再導出 ---

    def _grow(self, grow: Callable[[], int]) -> int:
        before = self._grid.row_count
        added = grow()
        if added:
            self._refresh_rows(range(before, self._grid.row_count))
        return added

    # @intent:responsibility グリッドの全行をメモリから再導出します。読み出しは全て通知なしで行われます。
    def refresh(self) -> None:
        self._refresh_rows(range(self._grid.row_count))

    def _refresh_rows(self, rows: Iterable[int]) -> None:
        if self._memory is None:
            return
        word_size = self._space.word_size
        for row in rows:
            slot = self._grid.slot(row)
            if slot.address < self._space.limit:
                continue
            try:
                if self._space.is_top_word(slot.address):
                    # 最上位ワードはバイト単位で読み出せないため、ワードで読み出して分解する
                    slot.bytes = self._byte_view.decode_word(self._memory.peek_word(slot.address))
                else:
                    slot.bytes = [self._memory.peek_byte(slot.address + i) for i in range(word_size)]
            except IndexError:
                # 未マップの領域は未観測のまま残す
                continue

    def _sync_pointer(self) -> None:
        sp_value = self._registers.read_register(self._sp_index)
        if not self._space.is_in_segment(sp_value) or self._space.align_down(sp_value) > self._grid.max_address:
            # プログラムのロード前はSPが未設定のため、初期SPを採用する
            sp_value = self._space.initial_sp
        self._pointer_row = self._grid.row_for(sp_value)
        self._pointer_column = self._grid.column_for(sp_value)
        self._grow(lambda: self._grid.grow_if_near(self._pointer_row, self._grid_config.remaining_rows_threshold))

    # --- セッション制御 ---

    # @intent:responsibility エンジンをリセットします。
    # @intent:rationale full=Trueはシミュレータのレジスタ/メモリのリセットに、full=Falseはツール自体のリセットに対応します。
    #                  後者ではプログラム実行中に押下されてもコールスタックの追跡が崩れないよう、トラッカーを維持します。
    def reset(self, full: bool = True) -> None:
        if full:
            self._tracker.reset()
            self._grid.clear()
            self._pending_register = None
            self._pending_frame_label = None
        self.refresh()
        self._sync_pointer()

    # @intent:responsibility 途中接続や実行履歴の巻き戻しの後に、シャドウコールスタックを手動で空にします。
    def resync(self) -> None:
        self._tracker.reset()
        self._pending_register = None
        self._pending_frame_label = None

    def grow_to(self, min_rows: int) -> int:
        """
        行数がmin_rows以上になるまでグリッドを伸長し、追加した行数を返します。
        """
        return self._grow(lambda: self._grid.grow_to(min_rows))
