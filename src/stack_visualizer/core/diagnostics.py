# stack_visualizer/core/diagnostics.py
"""
診断情報モジュール

スタック再構築中に検出された異常（アドレス範囲外、呼び出し/復帰の不整合など）を
記録するためのデータ構造を定義します。
いずれの異常も処理中のイベント1件に閉じたソフトな失敗であり、エンジンの状態を壊しません。
"""
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Deque, List, Optional
import warnings

# @intent:responsibility 検出され得る異常の分類を定義します。
class AnomalyKind(Enum):
    OUT_OF_SEGMENT = "OUT_OF_SEGMENT"                     # スタックセグメント外のアドレス
    ABOVE_INITIAL_TOP = "ABOVE_INITIAL_TOP"               # 初期SPより上位のアドレス（未サポート領域）
    UNBALANCED_RETURN = "UNBALANCED_RETURN"               # 空のシャドウコールスタックからの復帰
    RETURN_ADDRESS_MISMATCH = "RETURN_ADDRESS_MISMATCH"   # 記録済みの呼び出し元と復帰先が不一致
    UNRESOLVED_RETURN = "UNRESOLVED_RETURN"               # 復帰先から呼び出し命令を特定できない
    SUBROUTINE_NOT_ACTIVE = "SUBROUTINE_NOT_ACTIVE"       # 活動中でないサブルーチンからの復帰
    UNRESOLVED_SYMBOL = "UNRESOLVED_SYMBOL"               # ジャンプ先アドレスにラベルが存在しない
    MALFORMED_INSTRUCTION = "MALFORMED_INSTRUCTION"       # オペランドが欠落した、または範囲外の命令

# @intent:responsibility 単一の異常を記録します。
@dataclass(frozen=True) # 不変データ構造
class Diagnostic:
    """
    検出された異常1件を表すデータクラス。
    """
    kind: AnomalyKind
    message: str
    address: Optional[int] = None

    def __str__(self) -> str:
        if self.address is None:
            return f"[{self.kind.value}] {self.message}"
        return f"[{self.kind.value}] {self.message} (address {self.address:#010x})"

# @intent:responsibility 異常をPythonの警告機構で通知するための警告クラス。
class StackAnomalyWarning(RuntimeWarning):
    pass

# @intent:responsibility 異常の記録と通知を一元化します。
# @intent:rationale Busのアクティビティログと同様に、記録された診断は呼び出し側が取得・クリアします。
#                  保持件数には上限があり、超過分は古いものから破棄されます。
class DiagnosticLog:
    """
    診断ログ。reportされた異常を内部に蓄積し、同時に警告として通知します。
    上限を超えた場合は古いものから破棄され、破棄された件数はdropped_countで参照できます。
    """
    DEFAULT_MAX_ENTRIES = 1000

    def __init__(self, max_entries: int = DEFAULT_MAX_ENTRIES):
        if max_entries <= 0:
            raise ValueError("Maximum number of diagnostic entries must be a positive integer.")
        self._entries: Deque[Diagnostic] = deque(maxlen=max_entries)
        self._dropped = 0

    @property
    def max_entries(self) -> int:
        return self._entries.maxlen

    @property
    def dropped_count(self) -> int:
        return self._dropped

    def report(self, kind: AnomalyKind, message: str, address: Optional[int] = None) -> Diagnostic:
        """
        異常を記録し、StackAnomalyWarningとして通知します。
        """
        diagnostic = Diagnostic(kind=kind, message=message, address=address)
        if len(self._entries) == self._entries.maxlen:
            self._dropped += 1
        self._entries.append(diagnostic)
        warnings.warn(str(diagnostic), StackAnomalyWarning, stacklevel=3)
        return diagnostic

    def entries(self) -> List[Diagnostic]:
        return list(self._entries)

    # @intent:responsibility 記録された診断を取得し、クリアします。
    def get_and_clear(self) -> List[Diagnostic]:
        entries = list(self._entries)
        self._entries.clear() # ログをクリア
        self._dropped = 0
        return entries

    def __len__(self) -> int:
        return len(self._entries)
