# stack_visualizer/core/slot_grid.py
"""
Core Layer (スロットグリッド)

スタックセグメントの絶対アドレスを (行, 列) 座標に変換し、
必要な行数を確保する責務を負います。
行0が最上位アドレス（初期SPのワード）に対応し、行番号が増えるほどアドレスは減少します。
"""
from dataclasses import dataclass
from typing import Iterator, List, Optional

from stack_visualizer.common.types import SlotBytes
from stack_visualizer.core.address_space import AddressSpace
from stack_visualizer.core.byte_view import FIRST_BYTE_COLUMN

# @intent:responsibility セグメント幾何に関するアドレス解決の失敗を表します。
class SegmentError(ValueError):
    """
    アドレスをスロット座標に解決できなかったことを示す例外の基底クラス。
    """
    def __init__(self, message: str, address: int):
        super().__init__(message)
        self.address = address

class OutOfSegmentError(SegmentError):
    pass

class AboveInitialTopError(SegmentError):
    pass

# @intent:responsibility スタックセグメントのワード単位の格納領域1つ分の状態を保持します。
@dataclass
class StackSlot:
    """
    スタックスロット。バイト列はアドレス順（オフセット0がaddress）で保持されます。
    """
    address: int
    bytes: SlotBytes
    stored_register_name: Optional[str] = None
    frame_label: Optional[str] = None

    @classmethod
    def empty(cls, address: int, word_size: int) -> "StackSlot":
        return cls(address=address, bytes=[None] * word_size)

    def clear_annotations(self) -> None:
        self.stored_register_name = None
        self.frame_label = None

    def clear(self) -> None:
        self.bytes = [None] * len(self.bytes)
        self.clear_annotations()

    @property
    def is_observed(self) -> bool:
        return all(b is not None for b in self.bytes)

# @intent:responsibility アドレスと (行, 列) の対応付けと、行の伸長を管理します。
# @intent:rationale 行は追加のみ行い、並べ替えや削除は行いません。これにより表示層が保持する行番号が常に有効であり続けます。
class SlotGrid:
    """
    伸長可能なスタックスロットの列。
    """
    DEFAULT_GROWTH_MARGIN = 10

    def __init__(self, address_space: AddressSpace, initial_rows: int = 0,
                 growth_margin: int = DEFAULT_GROWTH_MARGIN, first_byte_column: int = FIRST_BYTE_COLUMN):
        if initial_rows < 0 or growth_margin < 0:
            raise ValueError("Initial row count and growth margin must be non-negative.")
        self._space = address_space
        self._max_address = address_space.align_down(address_space.initial_sp)
        self._growth_margin = growth_margin
        self._last_byte_column = first_byte_column + (address_space.word_size - 1)
        self._slots: List[StackSlot] = []
        self.grow_to(initial_rows)

    @property
    def address_space(self) -> AddressSpace:
        return self._space

    @property
    def max_address(self) -> int:
        """
        行0に対応するアドレス（初期SPをワード境界に切り下げた値）。
        """
        return self._max_address

    @property
    def row_count(self) -> int:
        return len(self._slots)

    def __len__(self) -> int:
        return len(self._slots)

    def __iter__(self) -> Iterator[StackSlot]:
        return iter(self._slots)

    # @intent:responsibility アドレスに対応する行番号を返します。
    # @intent:pre-condition アドレスはスタックセグメント内かつ初期SP以下である必要があります。
    def row_for(self, address: int) -> int:
        if not self._space.is_in_segment(address):
            raise OutOfSegmentError(f"Address {address:#010x} is not in the stack segment.", address)
        row = (self._max_address - self._space.align_down(address)) // self._space.word_size
        if row < 0:
            raise AboveInitialTopError(
                f"Addresses higher than {self._max_address:#010x} are not supported.", address
            )
        return row

    # @intent:responsibility アドレスに対応する表示列を返します。エンディアンには依存しません。
    def column_for(self, address: int) -> int:
        if not self._space.is_in_segment(address):
            raise OutOfSegmentError(f"Address {address:#010x} is not in the stack segment.", address)
        return self._last_byte_column - (address % self._space.word_size)

    def address_for(self, row: int) -> int:
        return self._max_address - row * self._space.word_size

    # @intent:responsibility 指定行が存在することを保証します。不足していれば余裕分を含めて行を追加します。
    # @intent:post-condition row < row_count。同じrowで再度呼び出しても行数は変化しません。
    def ensure_rows(self, row: int) -> int:
        if row < self.row_count:
            return 0
        return self._append_rows(row - self.row_count + self._growth_margin)

    # @intent:responsibility SP変更時に呼ばれ、SP行の下に閾値分の行が残るよう先行して伸長します。
    def grow_if_near(self, current_row: int, threshold: int) -> int:
        if current_row + threshold > self.row_count:
            return self.ensure_rows(current_row + threshold - 1)
        return 0

    def grow_to(self, min_rows: int) -> int:
        """
        行数がmin_rows以上になるまで行を追加します。余裕分は追加しません。
        """
        if min_rows <= self.row_count:
            return 0
        return self._append_rows(min_rows - self.row_count)

    def slot(self, row: int) -> StackSlot:
        if not 0 <= row < self.row_count:
            raise IndexError(f"Row {row} out of range for grid of {self.row_count} rows.")
        return self._slots[row]

    # @intent:responsibility 指定範囲（両端を含む）の行の格納レジスタ名とフレームラベルを消去します。
    def clear_annotations(self, first_row: int, last_row: int) -> List[int]:
        cleared = []
        for row in range(max(first_row, 0), min(last_row, self.row_count - 1) + 1):
            self._slots[row].clear_annotations()
            cleared.append(row)
        return cleared

    # @intent:responsibility 全スロットの内容と注釈を消去します。行数は維持されます。
    def clear(self) -> None:
        for slot in self._slots:
            slot.clear()

    def _append_rows(self, count: int) -> int:
        word_size = self._space.word_size
        for _ in range(count):
            self._slots.append(StackSlot.empty(self.address_for(len(self._slots)), word_size))
        return count
