# stack_visualizer/transport/memory.py
"""
Transport Layer (メモリ)

このモジュールは、エンジンが要求するメモリ協調者のインターフェースと、
その参照実装（疎なRAMデバイスを束ねたバス）を提供します。

通知付きの読み出し（read_*）と通知なしの読み出し（peek_*）は別々のメソッドとして定義されます。
エンジンは自身の再描画・再導出に必ずpeek_*を使用し、通知チャネルへの再入を起こしません。
"""
from abc import ABC, abstractmethod
from typing import Dict, List, Tuple

from stack_visualizer.common.types import AccessOrigin, AccessType
from stack_visualizer.transport.notices import MemoryAccessNotice, NoticeListener

# @intent:responsibility エンジンが利用するメモリ協調者の抽象インターフェースを定義します。
class StackMemory(ABC):
    """
    スタックの再導出に必要な読み出し機能。
    """
    @abstractmethod
    def read_byte(self, address: int) -> int:
        """
        8bitのデータを読み出します。リスナーへ読み込み通知が配送されます。
        """
        pass

    @abstractmethod
    def read_word(self, address: int) -> int:
        """
        ワード長のデータを読み出します。リスナーへ読み込み通知が配送されます。
        """
        pass

    # @intent:responsibility 通知を発生させずに8bitのデータを読み出します。
    @abstractmethod
    def peek_byte(self, address: int) -> int:
        pass

    # @intent:responsibility 通知を発生させずにワード長のデータを読み出します。
    @abstractmethod
    def peek_word(self, address: int) -> int:
        pass

# @intent:responsibility バスの抽象デバイスインターフェースを定義します。
class Device(ABC):
    @abstractmethod
    def read(self, offset: int) -> int:
        pass

    @abstractmethod
    def write(self, offset: int, data: int) -> None:
        pass

# @intent:responsibility 書き込まれたバイトのみを保持する疎なRAMデバイスを提供します。
# @intent:rationale MIPSのスタックセグメントのように数百MBに及ぶ領域を、連続した領域を確保せずに扱うためのものです。
class SparseRAM(Device):
    """
    未書き込みのバイトは0として読み出される疎なRAMデバイス。
    """
    # @intent:pre-condition sizeは正の整数である必要があります。
    def __init__(self, size: int):
        if not isinstance(size, int) or size <= 0:
            raise ValueError("RAM size must be a positive integer.")
        self._cells: Dict[int, int] = {}
        self._size = size

    def _check_offset(self, offset: int) -> None:
        if not 0 <= offset < self._size:
            raise IndexError(f"Offset {offset} out of bounds for RAM of size {self._size}.")

    def read(self, offset: int) -> int:
        self._check_offset(offset)
        return self._cells.get(offset, 0)

    def write(self, offset: int, data: int) -> None:
        self._check_offset(offset)
        if not 0 <= data <= 0xFF:
            raise ValueError(f"Data {data} is not an 8-bit value.")
        self._cells[offset] = data

    def get_size(self) -> int:
        return self._size

# @intent:responsibility アドレス空間を管理し、デバイスへのアクセスのディスパッチと通知の配送を行う参照実装。
# @intent:rationale シミュレータ本体はスコープ外だが、エンジンの再入禁止の契約を検証できるよう、通知の有無を区別するバスを用意します。
class SimulatedMemory(StackMemory):
    """
    RAMデバイスを束ねたバイトアドレスのメモリ。
    アドレス範囲ごとにリスナーを登録でき、read_*/write_*の度にMemoryAccessNoticeが配送されます。
    """
    def __init__(self, word_size: int = 4, little_endian: bool = True):
        self._word_size = word_size
        self._little_endian = little_endian
        # メモリマップ: (start_address, end_address, device) のタプルリスト
        self._memory_map: List[Tuple[int, int, Device]] = []
        # リスナー: (start_address, end_address, listener) のタプルリスト
        self._listeners: List[Tuple[int, int, NoticeListener]] = []

    @property
    def word_size(self) -> int:
        return self._word_size

    # @intent:responsibility 指定されたアドレス範囲にデバイスを登録します。
    # @intent:rationale アドレス範囲の重複チェックは行いません。呼び出し元が責任を持ちます。
    def register_device(self, start_address: int, end_address: int, device: Device) -> None:
        if not (0 <= start_address <= end_address):
            raise ValueError("Invalid address range: start_address must be <= end_address and non-negative.")
        if not isinstance(device, Device):
            raise TypeError("Device must be an instance of a class derived from Device.")
        if isinstance(device, SparseRAM):
            expected_size = end_address - start_address + 1
            if device.get_size() != expected_size:
                raise ValueError(
                    f"Registered {type(device).__name__} device size ({device.get_size()} bytes) does not match "
                    f"the specified address range size ({expected_size} bytes)."
                )
        self._memory_map.append((start_address, end_address, device))

    # @intent:responsibility 指定範囲のアクセス通知を受け取るリスナーを登録します。
    def add_listener(self, listener: NoticeListener, start_address: int, end_address: int) -> None:
        if start_address > end_address:
            start_address, end_address = end_address, start_address
        self._listeners.append((start_address, end_address, listener))

    def remove_listener(self, listener: NoticeListener) -> None:
        self._listeners = [entry for entry in self._listeners if entry[2] != listener]

    # @intent:post-condition デバイスが見つからなかった場合、IndexErrorを発生させます。
    def _find_device(self, address: int) -> Tuple[Device, int]:
        for start, end, device in self._memory_map:
            if start <= address <= end:
                return device, address - start
        raise IndexError(f"Address {address:#010x} not mapped to any device.")

    def _notify(self, address: int, value: int, access_type: AccessType, length: int, origin: AccessOrigin) -> None:
        notice = MemoryAccessNotice(address=address, value=value, access_type=access_type, length=length, origin=origin)
        for start, end, listener in list(self._listeners):
            if start <= address <= end:
                listener(notice)

    # --- 通知なしのアクセス ---

    def peek_byte(self, address: int) -> int:
        device, offset = self._find_device(address)
        return device.read(offset)

    def peek(self, address: int, length: int) -> int:
        """
        lengthバイトの値をエンディアンに従って組み立てます（通知なし）。
        """
        raw = [self.peek_byte(address + i) for i in range(length)]
        if self._little_endian:
            raw.reverse()
        value = 0
        for b in raw:
            value = (value << 8) | b
        return value

    def peek_word(self, address: int) -> int:
        return self.peek(address, self._word_size)

    def load(self, address: int, value: int, length: int = 1) -> None:
        """
        通知を発生させずに値を書き込みます。プログラムのロードや初期化に使用します。
        """
        value &= (1 << (length * 8)) - 1
        shifts = range(length) if self._little_endian else range(length - 1, -1, -1)
        for i, shift in enumerate(shifts):
            device, offset = self._find_device(address + i)
            device.write(offset, (value >> (shift * 8)) & 0xFF)

    # --- 通知付きのアクセス ---

    def read(self, address: int, length: int, origin: AccessOrigin = AccessOrigin.PROGRAM) -> int:
        value = self.peek(address, length)
        self._notify(address, value, AccessType.READ, length, origin)
        return value

    def read_byte(self, address: int) -> int:
        return self.read(address, 1)

    def read_word(self, address: int) -> int:
        return self.read(address, self._word_size)

    def write(self, address: int, value: int, length: int, origin: AccessOrigin = AccessOrigin.PROGRAM) -> None:
        self.load(address, value, length)
        self._notify(address, value & ((1 << (length * 8)) - 1), AccessType.WRITE, length, origin)

    def write_byte(self, address: int, value: int) -> None:
        self.write(address, value, 1)

    def write_half(self, address: int, value: int) -> None:
        self.write(address, value, 2)

    def write_word(self, address: int, value: int) -> None:
        self.write(address, value, self._word_size)
