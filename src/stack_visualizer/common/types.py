"""
共通の型定義を提供するモジュール。
プロジェクト全体で使用される汎用的な型エイリアスや列挙型を定義します。
"""
from enum import Enum
from typing import Dict, List, NamedTuple, Optional

# @intent:data_structure シンボル名とアドレスをマッピングする辞書の型エイリアス。
# ProgramImage, Builder, Engineなど複数のレイヤーで共通して使用されます。
SymbolMap = Dict[str, int]

# @intent:data_structure スロット内のバイト列。未観測のバイトはNoneで表現します。
SlotBytes = List[Optional[int]]

# @intent:responsibility バイトオーダーを定義します。
class ByteOrder(Enum):
    LITTLE = "little"
    BIG = "big"

    @classmethod
    def parse(cls, value: str) -> "ByteOrder":
        """
        設定ファイルなどの文字列表現（"little", "big"）からByteOrderを生成します。
        """
        normalized = str(value).strip().lower()
        for member in cls:
            if member.value == normalized:
                return member
        raise ValueError(f"Unknown byte order: {value}")

# @intent:responsibility アクセス通知の種別（読み込み/書き込み）を定義します。
class AccessType(Enum):
    READ = "READ"
    WRITE = "WRITE"

# @intent:responsibility アクセス通知の発生元を定義します。
# @intent:rationale プログラム実行以外（デバッガからのメモリ編集など）の通知はスタック再構築に使用しません。
class AccessOrigin(Enum):
    PROGRAM = "PROGRAM"
    DEBUGGER = "DEBUGGER"

# @intent:data_structure 表示列の定義。プレゼンテーション層が列を動的に生成するために使用される。
class ColumnInfo(NamedTuple):
    index: int
    title: str
