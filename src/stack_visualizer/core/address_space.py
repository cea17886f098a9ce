# stack_visualizer/core/address_space.py
"""
Core Layer (アドレス空間)

このモジュールは、スタックセグメントとテキストセグメントの幾何情報
（ベース、リミット、ワード長、アライメント規則）を表す純粋なデータ構造を定義します。
状態は持たず、全ての操作は副作用のない関数として提供されます。
"""
from dataclasses import dataclass

# @intent:responsibility スタックセグメントの幾何情報を保持し、アドレス判定とアライメントを提供します。
@dataclass(frozen=True) # 不変データ構造
class AddressSpace:
    """
    下位アドレス方向に伸長するスタックセグメントの幾何情報。

    base       : 最上位のワード境界アドレス（ワードアライン済み）
    limit      : 最下位のワード境界アドレス（ワードアライン済み）
    word_size  : ワード長（バイト、2の冪）
    initial_sp : セッション開始時のスタックポインタ値
    """
    base: int
    limit: int
    word_size: int = 4
    little_endian: bool = True
    initial_sp: int = -1

    # @intent:pre-condition word_sizeは2の冪、base/limitはワードアライン済みで limit <= base である必要があります。
    def __post_init__(self):
        if self.word_size <= 0 or (self.word_size & (self.word_size - 1)) != 0:
            raise ValueError(f"Word size must be a positive power of two, got {self.word_size}.")
        if self.base % self.word_size or self.limit % self.word_size:
            raise ValueError("Stack base and limit addresses must be word-aligned.")
        if self.limit > self.base:
            raise ValueError(
                f"Stack limit {self.limit:#010x} must not be higher than stack base {self.base:#010x}."
            )
        # initial_spが省略された場合はbaseを初期SPとみなす
        if self.initial_sp < 0:
            object.__setattr__(self, "initial_sp", self.base)
        elif not self.is_in_segment(self.initial_sp):
            raise ValueError(f"Initial stack pointer {self.initial_sp:#010x} is outside the stack segment.")

    @property
    def max_address(self) -> int:
        """
        セグメント内で到達可能な最大のバイトアドレス。
        """
        return self.base + (self.word_size - 1)

    # @intent:responsibility 指定アドレスがスタックセグメント内かどうかを判定します。
    def is_in_segment(self, address: int) -> bool:
        return self.limit <= address <= self.max_address

    def is_word_aligned(self, address: int) -> bool:
        return address % self.word_size == 0

    # @intent:responsibility アドレスを現在のワード境界に切り下げます。
    # @intent:rationale スタックは下位方向に伸長するため、非アラインのアドレスは常に下位側の境界に丸めます。
    #                  最上位ワードはワードアクセスでのみ到達可能であり、1バイト上への丸めは許されません。
    def align_down(self, address: int) -> int:
        if self.is_word_aligned(address):
            return address
        return address - (address % self.word_size)

    # @intent:responsibility 指定アドレスがセグメント最上位ワードに属するかどうかを判定します。
    # @intent:rationale 最上位ワードはシミュレータ上でバイト単位の読み出しが許されないため、呼び出し側でワード読み出しに切り替えます。
    def is_top_word(self, address: int) -> bool:
        return self.base <= address <= self.max_address

# @intent:responsibility テキスト（命令）セグメントの範囲を保持します。
@dataclass(frozen=True)
class TextSegment:
    """
    命令が配置されるテキストセグメント。上位方向に伸長する通常のアドレス範囲です。
    """
    start: int
    end: int

    def __post_init__(self):
        if not (0 <= self.start <= self.end):
            raise ValueError("Invalid text segment range: start must be <= end and non-negative.")

    def contains(self, address: int) -> bool:
        return self.start <= address <= self.end
