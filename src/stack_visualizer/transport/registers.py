# stack_visualizer/transport/registers.py
"""
Transport Layer (レジスタファイル)

エンジンが参照するレジスタファイルのインターフェースと、MIPSの32本の汎用レジスタを持つ参照実装を提供します。
"""
from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Tuple

from stack_visualizer.common.types import AccessOrigin, AccessType
from stack_visualizer.transport.notices import NoticeListener, RegisterAccessNotice

# @intent:constant MIPS汎用レジスタの名前（インデックス順）。
MIPS_REGISTER_NAMES: Tuple[str, ...] = (
    "$zero", "$at", "$v0", "$v1", "$a0", "$a1", "$a2", "$a3",
    "$t0", "$t1", "$t2", "$t3", "$t4", "$t5", "$t6", "$t7",
    "$s0", "$s1", "$s2", "$s3", "$s4", "$s5", "$s6", "$s7",
    "$t8", "$t9", "$k0", "$k1", "$gp", "$sp", "$fp", "$ra",
)

STACK_POINTER_INDEX = 29
RETURN_ADDRESS_INDEX = 31

# @intent:responsibility エンジンが利用するレジスタファイルの抽象インターフェースを定義します。
# @intent:rationale レジスタの読み出しは通知を発生させない前提です（通知は書き込み時のみ配送されます）。
class RegisterFile(ABC):
    @abstractmethod
    def read_register(self, index: int) -> int:
        pass

    @abstractmethod
    def register_name(self, index: int) -> str:
        pass

    @abstractmethod
    def index_of(self, name: str) -> int:
        pass

# @intent:responsibility 32bit汎用レジスタと書き込み通知を提供する参照実装。
class SimulatedRegisterFile(RegisterFile):
    """
    MIPS汎用レジスタファイル。観測対象として登録されたレジスタへの書き込みはリスナーに通知されます。
    """
    def __init__(self, names: Tuple[str, ...] = MIPS_REGISTER_NAMES, width: int = 32):
        self._names = names
        self._index: Dict[str, int] = {name: i for i, name in enumerate(names)}
        self._mask = (1 << width) - 1
        self._values: List[int] = [0] * len(names)
        self._listeners: List[Tuple[int, NoticeListener]] = []

    def _check_index(self, index: int) -> None:
        if not 0 <= index < len(self._values):
            raise IndexError(f"Register index {index} out of range.")

    def read_register(self, index: int) -> int:
        self._check_index(index)
        return self._values[index]

    def register_name(self, index: int) -> str:
        self._check_index(index)
        return self._names[index]

    def index_of(self, name: str) -> int:
        if name not in self._index:
            raise KeyError(f"Unknown register: {name}")
        return self._index[name]

    # @intent:responsibility 指定レジスタへの書き込みを観測するリスナーを登録します。
    def add_listener(self, listener: NoticeListener, index: int) -> None:
        self._check_index(index)
        self._listeners.append((index, listener))

    def remove_listener(self, listener: NoticeListener) -> None:
        self._listeners = [entry for entry in self._listeners if entry[1] != listener]

    def load(self, index: int, value: int) -> None:
        """
        通知を発生させずにレジスタ値を設定します。初期化用。
        """
        self._check_index(index)
        # $zeroは常に0
        if index != 0:
            self._values[index] = value & self._mask

    def write_register(self, index: int, value: int, origin: Optional[AccessOrigin] = None) -> None:
        self.load(index, value)
        notice = RegisterAccessNotice(
            register_name=self._names[index],
            value=self._values[index],
            access_type=AccessType.WRITE,
            origin=origin or AccessOrigin.PROGRAM,
        )
        for observed, listener in list(self._listeners):
            if observed == index:
                listener(notice)
