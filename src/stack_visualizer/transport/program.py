# stack_visualizer/transport/program.py
"""
Transport Layer (プログラムイメージ)

デコード済み命令のアドレス検索と、テキストセグメントのアドレスからラベルへの逆引きを提供します。
命令のデコード自体はシミュレータの責務であり、ここではその結果のみを扱います。
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Dict, Iterable, Optional, Tuple

from stack_visualizer.common.types import SymbolMap

# @intent:responsibility デコード済みの命令1件を記録します。
@dataclass(frozen=True) # 不変データ構造
class DecodedInstruction:
    """
    デコード済み命令。operandsはアセンブラのオペランドリスト順の整数値です。
    例: sw $ra, 28($sp) -> mnemonic="sw", operands=(31, 28, 29)
        jal sum        -> mnemonic="jal", operands=(target >> 2,)
        jr $ra         -> mnemonic="jr", operands=(31,)
    """
    address: int
    mnemonic: str
    operands: Tuple[int, ...] = field(default_factory=tuple)
    source_line: str = "" # 診断用

    def operand(self, index: int) -> int:
        if not 0 <= index < len(self.operands):
            raise IndexError(f"Instruction '{self.mnemonic}' at {self.address:#010x} has no operand {index}.")
        return self.operands[index]

    # @intent:responsibility J形式のジャンプ先フィールドを絶対アドレスに変換します。
    def target_address(self, word_size: int) -> int:
        return self.operand(0) * word_size

# @intent:responsibility エンジンが利用するプログラムイメージの抽象インターフェースを定義します。
class ProgramImage(ABC):
    # @intent:responsibility 指定アドレスの命令を返します。通知は発生しません。
    @abstractmethod
    def statement_at(self, address: int) -> Optional[DecodedInstruction]:
        pass

    # @intent:responsibility テキストセグメントのアドレスに対応するラベルを返します。
    @abstractmethod
    def label_at(self, address: int) -> Optional[str]:
        pass

# @intent:responsibility 命令表とシンボルマップをメモリ上に保持する参照実装。
class ProgramListing(ProgramImage):
    def __init__(self, statements: Iterable[DecodedInstruction] = (), symbol_map: Optional[SymbolMap] = None):
        self._statements: Dict[int, DecodedInstruction] = {}
        self._symbol_map: SymbolMap = {}
        self._reverse_symbol_map: Dict[int, str] = {}
        for statement in statements:
            self.add(statement)
        if symbol_map:
            self.set_symbol_map(symbol_map)

    def add(self, statement: DecodedInstruction) -> None:
        self._statements[statement.address] = statement

    # @intent:responsibility シンボルマップを設定します。
    def set_symbol_map(self, symbol_map: SymbolMap) -> None:
        self._symbol_map = dict(symbol_map)
        # 逆引きマップを作成して、アドレスからラベルを素早く引けるようにする
        self._reverse_symbol_map = {addr: name for name, addr in symbol_map.items()}

    def get_symbol_map(self) -> SymbolMap:
        return dict(self._symbol_map)

    def statement_at(self, address: int) -> Optional[DecodedInstruction]:
        return self._statements.get(address)

    def label_at(self, address: int) -> Optional[str]:
        return self._reverse_symbol_map.get(address)

    def __len__(self) -> int:
        return len(self._statements)
