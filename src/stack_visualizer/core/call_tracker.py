# stack_visualizer/core/call_tracker.py
"""
Core Layer (シャドウコールスタック)

観測された呼び出し命令（リンク付きジャンプ）と復帰命令（レジスタジャンプ）の対応を追跡し、
不整合を検出するとともに、活性化フレームに人間が読めるラベルを付与します。
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional

from stack_visualizer.core.diagnostics import AnomalyKind, Diagnostic, DiagnosticLog

# @intent:responsibility 未完了の呼び出し1件を記録します。
@dataclass(frozen=True) # 不変データ構造
class CallRecord:
    """
    シャドウコールスタックの1エントリ。呼び出し命令自身のアドレスを保持します。
    """
    return_site_address: int
    target_label: str = ""

# @intent:responsibility サブルーチン毎の活動中の呼び出し回数を保持します。
# @intent:rationale 再帰や再入時に "foo (3)" のようにフレームを区別するためだけに使用されます。
class ActiveCallStats:
    def __init__(self):
        self._active: Dict[str, int] = {}

    def add_call(self, name: str) -> int:
        """
        呼び出しを1件追加し、追加後の活動中の回数を返します。
        """
        count = self._active.get(name, 0) + 1
        self._active[name] = count
        return count

    def remove_call(self, name: str) -> bool:
        """
        呼び出しを1件取り除きます。既に0の場合は何もせずFalseを返します。
        """
        count = self._active.get(name, 0)
        if count <= 0:
            return False
        self._active[name] = count - 1
        return True

    def count(self, name: str) -> int:
        return self._active.get(name, 0)

    def as_dict(self) -> Dict[str, int]:
        return dict(self._active)

    def reset(self) -> None:
        self._active.clear()

# @intent:responsibility 復帰処理の結果を定義します。
class ReturnStatus(Enum):
    BALANCED = "BALANCED"                                 # 呼び出し元と一致
    RETURN_ADDRESS_MISMATCH = "RETURN_ADDRESS_MISMATCH"   # 不一致（ポップは実施済み）
    UNBALANCED_RETURN = "UNBALANCED_RETURN"               # 空のスタックからの復帰（何もしない）

# @intent:responsibility on_returnの結果を呼び出し側に返します。
@dataclass(frozen=True)
class ReturnResult:
    status: ReturnStatus
    popped: Optional[CallRecord] = None
    diagnostics: List[Diagnostic] = field(default_factory=list)

    @property
    def is_consistent(self) -> bool:
        return self.status is ReturnStatus.BALANCED and not self.diagnostics

# @intent:responsibility 呼び出し/復帰のペアリングとフレーム名の付与を行います。
# @intent:rationale 実行履歴の巻き戻しや途中接続はこのクラスからは観測できないため、
#                  不整合は例外ではなく結果値と診断として扱い、状態は常に前進させます。
class CallStackTracker:
    """
    シャドウコールスタックとサブルーチン毎の活動回数を保持するトラッカー。
    """
    def __init__(self, diagnostics: Optional[DiagnosticLog] = None):
        self._stack: List[CallRecord] = []
        self._stats = ActiveCallStats()
        self._diagnostics = diagnostics if diagnostics is not None else DiagnosticLog()

    @property
    def depth(self) -> int:
        return len(self._stack)

    @property
    def diagnostics(self) -> DiagnosticLog:
        return self._diagnostics

    def pending_calls(self) -> List[CallRecord]:
        """
        未完了の呼び出しを、古いものから順に返します。
        """
        return list(self._stack)

    def active_count(self, label: str) -> int:
        return self._stats.count(label)

    def active_calls(self) -> Dict[str, int]:
        return self._stats.as_dict()

    # @intent:responsibility 新しい呼び出しを記録し、呼び出し先フレームのラベルを返します。
    def on_call(self, call_site_address: int, target_label: str) -> str:
        self._stack.append(CallRecord(return_site_address=call_site_address, target_label=target_label))
        count = self._stats.add_call(target_label)
        return f"{target_label} ({count})"

    # @intent:responsibility 復帰を記録し、シャドウスタックの先頭と照合します。
    # @intent:post-condition スタックが空でなければ必ず1件ポップされます。
    def on_return(self, expected_return_site_address: int, subroutine_label: str) -> ReturnResult:
        diagnostics: List[Diagnostic] = []

        if not self._stats.remove_call(subroutine_label):
            diagnostics.append(self._diagnostics.report(
                AnomalyKind.SUBROUTINE_NOT_ACTIVE,
                f"Returning from '{subroutine_label}' which has no active calls.",
                expected_return_site_address,
            ))

        if not self._stack:
            # 途中接続や巻き戻しの後には発生し得る
            diagnostics.append(self._diagnostics.report(
                AnomalyKind.UNBALANCED_RETURN,
                "Mismatching number of subroutine calls and returns.",
                expected_return_site_address,
            ))
            return ReturnResult(status=ReturnStatus.UNBALANCED_RETURN, diagnostics=diagnostics)

        popped = self._stack.pop()
        if popped.return_site_address != expected_return_site_address:
            diagnostics.append(self._diagnostics.report(
                AnomalyKind.RETURN_ADDRESS_MISMATCH,
                f"Mismatching return address: {popped.return_site_address:#010x} vs "
                f"{expected_return_site_address:#010x} (expected/call vs actual/return)",
                expected_return_site_address,
            ))
            return ReturnResult(status=ReturnStatus.RETURN_ADDRESS_MISMATCH, popped=popped, diagnostics=diagnostics)

        return ReturnResult(status=ReturnStatus.BALANCED, popped=popped, diagnostics=diagnostics)

    # @intent:responsibility シャドウスタックと活動回数を消去します。描画済みのスロットラベルは対象外です。
    def reset(self) -> None:
        self._stack.clear()
        self._stats.reset()
