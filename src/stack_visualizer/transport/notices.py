# stack_visualizer/transport/notices.py
"""
Transport Layer (アクセス通知)

シミュレータからエンジンへ配送されるメモリ/レジスタアクセス通知のデータ構造を定義します。
"""
from dataclasses import dataclass
from typing import Callable, Union

from stack_visualizer.common.types import AccessOrigin, AccessType

# @intent:responsibility 単一のメモリアクセス（読み込みまたは書き込み）を記録します。
@dataclass(frozen=True) # 不変データ構造
class MemoryAccessNotice:
    """
    メモリアクセス通知。スタックセグメントとテキストセグメントの双方について配送されます。
    lengthはアクセス幅（バイト）で、ワード長と等しい場合はワードアクセスです。
    """
    address: int
    value: int
    access_type: AccessType
    length: int = 4
    origin: AccessOrigin = AccessOrigin.PROGRAM

    @property
    def is_write(self) -> bool:
        return self.access_type == AccessType.WRITE

    def is_word(self, word_size: int) -> bool:
        return self.length == word_size

# @intent:responsibility 単一のレジスタアクセスを記録します。現状はスタックポインタについてのみ配送されます。
@dataclass(frozen=True)
class RegisterAccessNotice:
    register_name: str
    value: int
    access_type: AccessType
    origin: AccessOrigin = AccessOrigin.PROGRAM

    @property
    def is_write(self) -> bool:
        return self.access_type == AccessType.WRITE

AccessNotice = Union[MemoryAccessNotice, RegisterAccessNotice]

# @intent:data_structure 通知を受け取るリスナーの型。エンジンのhandleメソッドなどが該当します。
NoticeListener = Callable[[AccessNotice], object]
