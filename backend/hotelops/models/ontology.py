"""
本体对象定义 (Ontology Objects)
预订、消费、付款三类对象围绕 Booking 聚合根建模；
房型、房间、服务目录与用户是外部协作方提供的只读数据
"""
from datetime import datetime
from decimal import Decimal
from enum import Enum
from sqlalchemy import (
    Column, Integer, String, DateTime, Date,
    ForeignKey, Text, Enum as SQLEnum, Boolean, Numeric, CheckConstraint
)
from sqlalchemy.orm import relationship
from hotelops.database import Base


ZERO = Decimal("0.00")


# ============== 枚举定义 ==============

class UserRole(str, Enum):
    """用户角色（封闭枚举，权限判断必须穷举）"""
    ADMIN = "admin"      # 管理员
    STAFF = "staff"      # 员工
    GUEST = "guest"      # 客人


class RoomStatus(str, Enum):
    """房间静态状态"""
    AVAILABLE = "Available"        # 可用
    OCCUPIED = "Occupied"          # 入住中
    CLEANING = "Cleaning"          # 待清洁
    MAINTENANCE = "Maintenance"    # 维护中
    OUT_OF_ORDER = "OutOfOrder"    # 停用


class BookingStatus(str, Enum):
    """预订状态"""
    PENDING = "Pending"            # 待确认（软占用）
    CONFIRMED = "Confirmed"        # 已确认
    CHECKED_IN = "CheckedIn"       # 已入住
    CHECKED_OUT = "CheckedOut"     # 已退房
    CANCELLED = "Cancelled"        # 已取消
    NO_SHOW = "NoShow"             # 未到店


# 占用房间的状态：Pending 软占用，Confirmed / CheckedIn 硬占用
OCCUPYING_STATUSES = (BookingStatus.PENDING, BookingStatus.CONFIRMED, BookingStatus.CHECKED_IN)

# 终态
TERMINAL_STATUSES = (BookingStatus.CHECKED_OUT, BookingStatus.CANCELLED, BookingStatus.NO_SHOW)

# 可以追加消费 / 付款的状态
OPEN_STATUSES = OCCUPYING_STATUSES


class PaymentMethod(str, Enum):
    """支付方式"""
    CASH = "cash"                      # 现金
    CREDIT_CARD = "credit_card"        # 信用卡
    DEBIT_CARD = "debit_card"          # 借记卡
    BANK_TRANSFER = "bank_transfer"    # 银行转账
    E_WALLET = "e_wallet"              # 电子钱包
    ONLINE = "online"                  # 在线支付


class PaymentType(str, Enum):
    """付款类型"""
    FULL = "full"                          # 全款
    PARTIAL = "partial"                    # 部分付款
    RESERVATION_FEE = "reservation_fee"    # 订金
    SERVICE_PAYMENT = "service_payment"    # 服务费用


class PaymentStatus(str, Enum):
    """付款状态"""
    COMPLETED = "completed"
    PENDING = "pending"


# ============== 协作方数据 ==============

class User(Base):
    """
    用户对象 - 身份上下文
    令牌的 sub 指向 users.id
    """
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    username = Column(String(50), unique=True, nullable=False)  # 登录账号
    password_hash = Column(String(255))                  # 密码哈希
    full_name = Column(String(100), nullable=False)      # 姓名
    email = Column(String(100))                          # 邮箱
    phone = Column(String(20))                           # 手机号
    role = Column(SQLEnum(UserRole), nullable=False, default=UserRole.GUEST)
    is_active = Column(Boolean, default=True)            # 是否启用
    created_at = Column(DateTime, default=datetime.utcnow)

    # 链接
    bookings = relationship("Booking", back_populates="guest")


class RoomType(Base):
    """房型对象 - 提供每晚价格和容量"""
    __tablename__ = "room_types"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(50), unique=True, nullable=False)  # 房型名称
    description = Column(Text)
    base_price = Column(Numeric(10, 2), nullable=False)     # 每晚价格
    capacity = Column(Integer, default=2)                   # 最大入住人数
    created_at = Column(DateTime, default=datetime.utcnow)

    # 链接
    rooms = relationship("Room", back_populates="room_type")


class Room(Base):
    """房间对象"""
    __tablename__ = "rooms"

    id = Column(Integer, primary_key=True, index=True)
    room_number = Column(String(10), unique=True, nullable=False)  # 房间号
    floor = Column(Integer, default=1)                             # 楼层
    room_type_id = Column(Integer, ForeignKey("room_types.id"), nullable=False)
    status = Column(SQLEnum(RoomStatus), default=RoomStatus.AVAILABLE)
    # 创建预订时先更新此列，串行化同一房间的并发创建
    booking_seq = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, default=datetime.utcnow)

    # 链接
    room_type = relationship("RoomType", back_populates="rooms")
    bookings = relationship("Booking", back_populates="room")


class ServiceCatalogItem(Base):
    """服务目录 - 当前售价"""
    __tablename__ = "service_catalog"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), nullable=False)           # 服务名称
    description = Column(Text)
    category = Column(String(50))                        # 分类（餐饮、洗衣、SPA...）
    current_price = Column(Numeric(10, 2), nullable=False)
    is_available = Column(Boolean, default=True)
    created_at = Column(DateTime, default=datetime.utcnow)


# ============== 预订聚合根 ==============

class Booking(Base):
    """
    预订对象 - 聚合根
    金额字段只能由 LedgerService.recompute 写入，状态只能由
    BookingService.transition_status 写入
    """
    __tablename__ = "bookings"
    __table_args__ = (
        CheckConstraint("check_out_date > check_in_date", name="ck_booking_date_range"),
        CheckConstraint("guest_count >= 1", name="ck_booking_guest_count"),
    )

    id = Column(Integer, primary_key=True, index=True)
    booking_reference = Column(String(32), unique=True, nullable=False)  # 预订号
    room_id = Column(Integer, ForeignKey("rooms.id"), nullable=False, index=True)
    guest_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    check_in_date = Column(Date, nullable=False)         # 入住日期
    check_out_date = Column(Date, nullable=False)        # 离店日期
    guest_count = Column(Integer, nullable=False, default=1)
    status = Column(SQLEnum(BookingStatus), nullable=False, default=BookingStatus.PENDING)
    base_amount = Column(Numeric(10, 2), nullable=False, default=ZERO)      # 房费
    services_amount = Column(Numeric(10, 2), nullable=False, default=ZERO)  # 消费合计
    total_amount = Column(Numeric(10, 2), nullable=False, default=ZERO)     # 房费 + 消费
    paid_amount = Column(Numeric(10, 2), nullable=False, default=ZERO)      # 已付
    special_requests = Column(Text)                      # 特殊要求
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
    checked_in_at = Column(DateTime)                     # 实际入住时间
    checked_out_at = Column(DateTime)                    # 实际退房时间
    version = Column(Integer, nullable=False)            # 乐观锁版本号

    __mapper_args__ = {"version_id_col": version}

    # 链接
    room = relationship("Room", back_populates="bookings")
    guest = relationship("User", back_populates="bookings")
    service_usages = relationship(
        "ServiceUsageEntry", back_populates="booking", order_by="ServiceUsageEntry.id"
    )
    payments = relationship("Payment", back_populates="booking", order_by="Payment.id")

    @property
    def outstanding_amount(self) -> Decimal:
        """未结余额，永不为负"""
        balance = (self.total_amount or ZERO) - (self.paid_amount or ZERO)
        return balance if balance > 0 else ZERO

    @property
    def nights(self) -> int:
        return (self.check_out_date - self.check_in_date).days

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


class ServiceUsageEntry(Base):
    """
    消费记录 - 属于 Booking
    unit_price 为添加时的价格快照，目录改价不影响已有记录
    """
    __tablename__ = "service_usage"
    __table_args__ = (
        CheckConstraint("quantity >= 1", name="ck_service_usage_quantity"),
    )

    id = Column(Integer, primary_key=True, index=True)
    booking_id = Column(Integer, ForeignKey("bookings.id"), nullable=False, index=True)
    service_id = Column(Integer, ForeignKey("service_catalog.id"), nullable=False)
    quantity = Column(Integer, nullable=False)
    unit_price = Column(Numeric(10, 2), nullable=False)  # 价格快照
    total_price = Column(Numeric(10, 2), nullable=False)  # quantity * unit_price
    notes = Column(Text)
    service_date = Column(Date)
    created_at = Column(DateTime, default=datetime.utcnow)

    # 链接
    booking = relationship("Booking", back_populates="service_usages")
    service = relationship("ServiceCatalogItem")


class Payment(Base):
    """
    付款记录 - 属于 Booking
    创建后不可修改
    """
    __tablename__ = "payments"
    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_payment_amount_positive"),
    )

    id = Column(Integer, primary_key=True, index=True)
    payment_reference = Column(String(32), unique=True, nullable=False)
    booking_id = Column(Integer, ForeignKey("bookings.id"), nullable=False, index=True)
    amount = Column(Numeric(10, 2), nullable=False)      # 支付金额
    method = Column(SQLEnum(PaymentMethod), nullable=False)
    payment_type = Column(SQLEnum(PaymentType), nullable=False)
    status = Column(SQLEnum(PaymentStatus), nullable=False, default=PaymentStatus.COMPLETED)
    transaction_id = Column(String(100))                 # 第三方交易号
    notes = Column(Text)
    paid_at = Column(DateTime, default=datetime.utcnow)
    created_by = Column(Integer, ForeignKey("users.id"))

    # 链接
    booking = relationship("Booking", back_populates="payments")
    operator = relationship("User", foreign_keys=[created_by])
