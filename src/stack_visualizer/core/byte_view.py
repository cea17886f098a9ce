# stack_visualizer/core/byte_view.py
"""
Core Layer (バイトビュー)

ワード長のスロットを、設定されたエンディアンに従ってバイト単位の表示列へ
分解・再構成する責務を負います。数値の書式（16進/10進）は表示層の関心事であり、
ここでは生の整数値のみを扱います。
"""
from typing import List, Optional, Sequence

from stack_visualizer.common.types import ColumnInfo, SlotBytes

# @intent:constant 表示列の配置。0列目はアドレス、続いてバイト列、格納レジスタ列、フレームラベル列の順に並びます。
ADDRESS_COLUMN = 0
FIRST_BYTE_COLUMN = 1

# @intent:responsibility ワードとバイト列、バイト列と表示列の対応を提供します。
class ByteView:
    """
    エンディアンを考慮したワードのバイト分解ビュー。

    スロットのバイト列は常にアドレス順（オフセット0がワードの先頭アドレス）で保持され、
    どのバイトがどの表示列に現れるかはこのクラスが決定します。
    """
    def __init__(self, word_size: int = 4, little_endian: bool = True, first_byte_column: int = FIRST_BYTE_COLUMN):
        if word_size <= 0:
            raise ValueError("Word size must be a positive integer.")
        self._word_size = word_size
        self._little_endian = little_endian
        self._first_byte_column = first_byte_column

    @property
    def word_size(self) -> int:
        return self._word_size

    @property
    def little_endian(self) -> bool:
        return self._little_endian

    @property
    def first_byte_column(self) -> int:
        return self._first_byte_column

    @property
    def last_byte_column(self) -> int:
        return self._first_byte_column + (self._word_size - 1)

    @property
    def stored_register_column(self) -> int:
        return self.last_byte_column + 1

    @property
    def frame_label_column(self) -> int:
        return self.last_byte_column + 2

    @property
    def column_count(self) -> int:
        return self.frame_label_column + 1

    # @intent:responsibility ワード内のバイト位置（アドレスオフセット）を表示列に変換します。
    # @intent:rationale リトルエンディアンでは下位アドレスの最下位バイトが右端の列に、ビッグエンディアンでは左端の列に現れます。
    def byte_column_for(self, byte_index: int) -> int:
        self._check_byte_index(byte_index)
        if self._little_endian:
            return self.last_byte_column - byte_index
        return self.first_byte_column + byte_index

    def byte_index_for_column(self, column: int) -> int:
        """
        byte_column_forの逆変換。表示列からワード内のバイト位置を求めます。
        """
        if not self.first_byte_column <= column <= self.last_byte_column:
            raise IndexError(f"Column {column} is not a byte column.")
        if self._little_endian:
            return self.last_byte_column - column
        return column - self.first_byte_column

    # @intent:responsibility ワード値をアドレス順のバイト列に分解します。
    # @intent:rationale セグメント最上位ワードではバイト単位の読み出しが許されないため、ワード全体を読みシフトとマスクで各バイトを得ます。
    def decode_word(self, word: int) -> List[int]:
        return self.decompose(word, self._word_size)

    # @intent:responsibility アドレス順のバイト列をワード値に再構成します。未観測のバイトがあればNoneを返します。
    def encode_word(self, slot_bytes: Sequence[Optional[int]]) -> Optional[int]:
        if len(slot_bytes) != self._word_size:
            raise ValueError(f"Expected {self._word_size} bytes, got {len(slot_bytes)}.")
        if any(b is None for b in slot_bytes):
            return None
        ordered = slot_bytes if not self._little_endian else list(reversed(slot_bytes))
        word = 0
        for b in ordered:
            word = (word << 8) | (b & 0xFF)
        return word

    def decompose(self, value: int, length: int) -> List[int]:
        """
        lengthバイトのストア値を、メモリに配置される順（アドレス順）のバイト列に分解します。
        """
        if not 0 < length <= self._word_size:
            raise ValueError(f"Invalid access length {length} for word size {self._word_size}.")
        value &= (1 << (length * 8)) - 1
        shifts = range(length) if self._little_endian else range(length - 1, -1, -1)
        return [(value >> (shift * 8)) & 0xFF for shift in shifts]

    # @intent:responsibility アドレス順のバイト列を、表示列の左から右への順に並べ替えます。
    def columns(self, slot_bytes: SlotBytes) -> SlotBytes:
        laid_out: SlotBytes = [None] * self._word_size
        for byte_index, value in enumerate(slot_bytes):
            laid_out[self.byte_column_for(byte_index) - self.first_byte_column] = value
        return laid_out

    def column_names(self) -> List[ColumnInfo]:
        """
        表示列の定義を返します。バイト列の見出しはワード先頭からのオフセット（+3 ... +0）です。
        """
        names = [ColumnInfo(ADDRESS_COLUMN, "Address")]
        for i in range(self._word_size):
            names.append(ColumnInfo(self.first_byte_column + i, f"+{self._word_size - 1 - i}"))
        names.append(ColumnInfo(self.stored_register_column, "Stored Reg"))
        names.append(ColumnInfo(self.frame_label_column, "Call Layout"))
        return names

    def _check_byte_index(self, byte_index: int) -> None:
        if not 0 <= byte_index < self._word_size:
            raise IndexError(f"Byte index {byte_index} out of range for word size {self._word_size}.")
