"""Initial schema: users, catalog, inventory, carts, orders, payments, shipments

Revision ID: 0001_initial_schema
Revises:
Create Date: 2026-10-19 12:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '0001_initial_schema'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


ORDER_STATUS_CHECK = (
    "IN ('pending','payment_pending','payment_failed','paid','processing','ready_to_ship',"
    "'shipped','out_for_delivery','delivered','completed','cancelled','refunded','failed')"
)
SHIPMENT_STATUS_CHECK = (
    "IN ('pending','processing','ready_to_ship','picked_up','in_transit',"
    "'out_for_delivery','delivered','failed','returned')"
)
INVENTORY_POLICY_CHECK = "IN ('track','no_track','track_but_allow_oversell')"


def _created_at() -> sa.Column:
    return sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False)


def _updated_at() -> sa.Column:
    return sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False)


def upgrade() -> None:
    """Create all Sharq Aljazeera tables"""

    # ---- 用户与认证 ----
    op.create_table('users',
        sa.Column('id', sa.BigInteger(), nullable=False, comment='用户ID'),
        sa.Column('email', sa.String(length=255), nullable=False, comment='邮箱'),
        sa.Column('email_verified', sa.Boolean(), nullable=False, comment='邮箱已验证'),
        sa.Column('phone', sa.String(length=20), nullable=True, comment='手机号'),
        sa.Column('phone_verified', sa.Boolean(), nullable=False, comment='手机已验证'),
        sa.Column('password_hash', sa.Text(), nullable=False, comment='密码哈希'),
        sa.Column('first_name', sa.String(length=100), nullable=False, comment='名'),
        sa.Column('last_name', sa.String(length=100), nullable=False, comment='姓'),
        sa.Column('avatar', sa.Text(), nullable=True, comment='头像URL'),
        sa.Column('date_of_birth', sa.DateTime(timezone=True), nullable=True, comment='出生日期'),
        sa.Column('gender', sa.String(length=20), nullable=True, comment='性别'),
        sa.Column('role', sa.String(length=20), nullable=False, comment='角色'),
        sa.Column('status', sa.String(length=30), nullable=False, comment='账号状态'),
        sa.Column('last_login_at', sa.DateTime(timezone=True), nullable=True, comment='最后登录时间'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False, comment='创建时间'),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False, comment='更新时间'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('email', name='uq_users_email'),
        sa.CheckConstraint("role IN ('customer','admin','vendor','support')", name='ck_users_role'),
        sa.CheckConstraint(
            "status IN ('active','inactive','suspended','pending_verification')", name='ck_users_status'
        ),
        sa.CheckConstraint(
            "gender IN ('male','female','other','prefer_not_to_say')", name='ck_users_gender'
        ),
    )
    op.create_index('ix_users_phone', 'users', ['phone'], unique=False)
    op.create_index('ix_users_role', 'users', ['role'], unique=False)
    op.create_index('ix_users_status', 'users', ['status'], unique=False)

    op.create_table('accounts',
        sa.Column('id', sa.BigInteger(), nullable=False),
        sa.Column('user_id', sa.BigInteger(), nullable=False, comment='用户ID'),
        sa.Column('provider', sa.String(length=20), nullable=False, comment='OAuth 提供方'),
        sa.Column('provider_account_id', sa.String(length=255), nullable=False, comment='提供方账号ID'),
        sa.Column('access_token', sa.Text(), nullable=True),
        sa.Column('refresh_token', sa.Text(), nullable=True),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('token_type', sa.String(length=50), nullable=True),
        sa.Column('scope', sa.Text(), nullable=True),
        sa.Column('id_token', sa.Text(), nullable=True),
        sa.Column('session_state', sa.Text(), nullable=True),
        _created_at(),
        _updated_at(),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('provider', 'provider_account_id', name='uq_accounts_provider_account'),
        sa.CheckConstraint("provider IN ('google','facebook','apple')", name='ck_accounts_provider'),
    )
    op.create_index('ix_accounts_user_id', 'accounts', ['user_id'], unique=False)

    op.create_table('user_sessions',
        sa.Column('id', sa.BigInteger(), nullable=False),
        sa.Column('user_id', sa.BigInteger(), nullable=False, comment='用户ID'),
        sa.Column('session_token', sa.String(length=64), nullable=False, comment='会话令牌'),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False, comment='过期时间'),
        sa.Column('ip_address', sa.String(length=45), nullable=True, comment='登录IP'),
        sa.Column('user_agent', sa.Text(), nullable=True, comment='User-Agent'),
        _created_at(),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False, comment='最后刷新时间'),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('session_token', name='uq_user_sessions_token'),
    )
    op.create_index('ix_user_sessions_user_id', 'user_sessions', ['user_id'], unique=False)
    op.create_index('ix_user_sessions_expires_at', 'user_sessions', ['expires_at'], unique=False)

    op.create_table('verification_tokens',
        sa.Column('id', sa.BigInteger(), nullable=False),
        sa.Column('user_id', sa.BigInteger(), nullable=True, comment='用户ID'),
        sa.Column('token', sa.String(length=128), nullable=False, comment='令牌'),
        sa.Column('type', sa.String(length=30), nullable=False, comment='令牌类型'),
        sa.Column('identifier', sa.String(length=255), nullable=False, comment='标识（邮箱或手机号）'),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False, comment='过期时间'),
        sa.Column('used_at', sa.DateTime(timezone=True), nullable=True, comment='使用时间'),
        _created_at(),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('token', name='uq_verification_tokens_token'),
        sa.CheckConstraint(
            "type IN ('email_verification','password_reset','phone_verification','two_factor')",
            name='ck_verification_tokens_type'
        ),
    )
    op.create_index('ix_verification_tokens_identifier', 'verification_tokens', ['identifier'], unique=False)
    op.create_index('ix_verification_tokens_expires_at', 'verification_tokens', ['expires_at'], unique=False)

    op.create_table('addresses',
        sa.Column('id', sa.BigInteger(), nullable=False),
        sa.Column('user_id', sa.BigInteger(), nullable=False, comment='用户ID'),
        sa.Column('type', sa.String(length=10), nullable=False, comment='地址类型'),
        sa.Column('is_default', sa.Boolean(), nullable=False, comment='是否默认'),
        sa.Column('recipient_name', sa.String(length=255), nullable=False, comment='收件人'),
        sa.Column('recipient_phone', sa.String(length=20), nullable=False, comment='收件人电话'),
        sa.Column('address_line1', sa.Text(), nullable=False, comment='地址行1'),
        sa.Column('address_line2', sa.Text(), nullable=True, comment='地址行2'),
        sa.Column('city', sa.String(length=100), nullable=False, comment='城市'),
        sa.Column('governorate', sa.String(length=100), nullable=False, comment='省份'),
        sa.Column('district', sa.String(length=100), nullable=True, comment='区'),
        sa.Column('nearest_landmark', sa.Text(), nullable=True, comment='最近地标'),
        sa.Column('postal_code', sa.String(length=20), nullable=True, comment='邮编'),
        sa.Column('country', sa.String(length=100), nullable=False, comment='国家'),
        sa.Column('latitude', sa.String(length=50), nullable=True),
        sa.Column('longitude', sa.String(length=50), nullable=True),
        sa.Column('delivery_notes', sa.Text(), nullable=True, comment='配送备注'),
        _created_at(),
        _updated_at(),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.CheckConstraint("type IN ('home','work','other')", name='ck_addresses_type'),
    )
    op.create_index('ix_addresses_user_id', 'addresses', ['user_id'], unique=False)
    op.create_index('ix_addresses_governorate', 'addresses', ['governorate'], unique=False)
    op.create_index('ix_addresses_user_default', 'addresses', ['user_id', 'is_default'], unique=False)

    op.create_table('user_preferences',
        sa.Column('id', sa.BigInteger(), nullable=False),
        sa.Column('user_id', sa.BigInteger(), nullable=False, comment='用户ID'),
        sa.Column('language', sa.String(length=10), nullable=False, comment='语言'),
        sa.Column('currency', sa.String(length=10), nullable=False, comment='展示币种'),
        sa.Column('theme', sa.String(length=20), nullable=True, comment='主题'),
        sa.Column('notifications', sa.JSON(), nullable=False, comment='通知设置'),
        _created_at(),
        _updated_at(),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('user_id', name='uq_user_preferences_user'),
        sa.CheckConstraint("currency IN ('IQD','USD')", name='ck_user_preferences_currency'),
    )

    op.create_table('user_activity',
        sa.Column('id', sa.BigInteger(), nullable=False),
        sa.Column('user_id', sa.BigInteger(), nullable=False, comment='用户ID'),
        sa.Column('type', sa.String(length=30), nullable=False, comment='活动类型'),
        sa.Column('description', sa.Text(), nullable=False, comment='描述'),
        sa.Column('metadata', sa.JSON(), nullable=True, comment='附加数据'),
        sa.Column('ip_address', sa.String(length=45), nullable=True),
        sa.Column('user_agent', sa.Text(), nullable=True),
        _created_at(),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.CheckConstraint(
            "type IN ('login','logout','password_change','profile_update','address_added',"
            "'address_updated','order_placed','email_verified','phone_verified')",
            name='ck_user_activity_type'
        ),
    )
    op.create_index('ix_user_activity_user_id', 'user_activity', ['user_id'], unique=False)
    op.create_index('ix_user_activity_type', 'user_activity', ['type'], unique=False)
    op.create_index('ix_user_activity_created_at', 'user_activity', ['created_at'], unique=False)

    # ---- 商品目录 ----
    op.create_table('brands',
        sa.Column('id', sa.BigInteger(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False, comment='品牌名'),
        sa.Column('slug', sa.String(length=255), nullable=False, comment='URL 标识'),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('logo', sa.Text(), nullable=True),
        sa.Column('cover_image', sa.Text(), nullable=True),
        sa.Column('status', sa.String(length=20), nullable=False, comment='状态'),
        sa.Column('featured', sa.Boolean(), nullable=False, comment='是否推荐'),
        sa.Column('website_url', sa.Text(), nullable=True),
        sa.Column('country', sa.String(length=100), nullable=True),
        sa.Column('founded_year', sa.Integer(), nullable=True),
        sa.Column('product_count', sa.Integer(), nullable=False, comment='商品数'),
        sa.Column('display_order', sa.Integer(), nullable=False, comment='排序'),
        sa.Column('seo_title', sa.String(length=255), nullable=True),
        sa.Column('seo_description', sa.Text(), nullable=True),
        sa.Column('seo_keywords', sa.Text(), nullable=True, comment='逗号分隔'),
        _created_at(),
        _updated_at(),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('slug', name='uq_brands_slug'),
        sa.CheckConstraint("status IN ('active','inactive','draft')", name='ck_brands_status'),
    )
    op.create_index('ix_brands_status', 'brands', ['status'], unique=False)
    op.create_index('ix_brands_featured', 'brands', ['featured'], unique=False)
    op.create_index('ix_brands_display_order', 'brands', ['display_order'], unique=False)
    op.create_index('ix_brands_name', 'brands', ['name'], unique=False)

    op.create_table('categories',
        sa.Column('id', sa.BigInteger(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False, comment='分类名'),
        sa.Column('slug', sa.String(length=255), nullable=False, comment='URL 标识'),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('parent_id', sa.BigInteger(), nullable=True, comment='父分类ID'),
        sa.Column('level', sa.Integer(), nullable=False, comment='层级，根为0'),
        sa.Column('path', sa.JSON(), nullable=False, comment='祖先ID列表'),
        sa.Column('icon', sa.Text(), nullable=True),
        sa.Column('image', sa.Text(), nullable=True),
        sa.Column('cover_image', sa.Text(), nullable=True),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('featured', sa.Boolean(), nullable=False),
        sa.Column('display_order', sa.Integer(), nullable=False),
        sa.Column('product_count', sa.Integer(), nullable=False),
        sa.Column('show_in_menu', sa.Boolean(), nullable=False, comment='是否显示在菜单'),
        sa.Column('seo_title', sa.String(length=255), nullable=True),
        sa.Column('seo_description', sa.Text(), nullable=True),
        sa.Column('seo_keywords', sa.Text(), nullable=True),
        _created_at(),
        _updated_at(),
        sa.ForeignKeyConstraint(['parent_id'], ['categories.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('slug', name='uq_categories_slug'),
        sa.CheckConstraint("status IN ('active','inactive','draft')", name='ck_categories_status'),
        sa.CheckConstraint('level >= 0', name='ck_categories_level'),
    )
    op.create_index('ix_categories_parent_id', 'categories', ['parent_id'], unique=False)
    op.create_index('ix_categories_level', 'categories', ['level'], unique=False)
    op.create_index('ix_categories_status', 'categories', ['status'], unique=False)
    op.create_index('ix_categories_display_order', 'categories', ['display_order'], unique=False)
    op.create_index('ix_categories_name', 'categories', ['name'], unique=False)

    op.create_table('products',
        sa.Column('id', sa.BigInteger(), nullable=False),
        sa.Column('sku', sa.String(length=100), nullable=False, comment='SKU'),
        sa.Column('name', sa.String(length=255), nullable=False, comment='商品名'),
        sa.Column('slug', sa.String(length=255), nullable=False, comment='URL 标识'),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('short_description', sa.Text(), nullable=True),
        sa.Column('status', sa.String(length=20), nullable=False, comment='状态'),
        sa.Column('condition', sa.String(length=20), nullable=False, comment='成色'),
        sa.Column('brand_id', sa.BigInteger(), nullable=False, comment='品牌ID'),
        sa.Column('category_id', sa.BigInteger(), nullable=False, comment='分类ID'),
        sa.Column('price', sa.NUMERIC(precision=10, scale=2), nullable=False, comment='售价'),
        sa.Column('compare_at_price', sa.NUMERIC(precision=10, scale=2), nullable=True, comment='划线价'),
        sa.Column('cost', sa.NUMERIC(precision=10, scale=2), nullable=True, comment='成本（仅管理员可见）'),
        sa.Column('currency', sa.String(length=10), nullable=False),
        sa.Column('taxable', sa.Boolean(), nullable=False),
        sa.Column('tax_rate', sa.NUMERIC(precision=5, scale=2), nullable=True, comment='税率（%）'),
        sa.Column('weight', sa.Integer(), nullable=True, comment='重量（克）'),
        sa.Column('dimensions', sa.JSON(), nullable=True, comment='尺寸 {length,width,height,unit}'),
        sa.Column('featured', sa.Boolean(), nullable=False),
        sa.Column('is_new', sa.Boolean(), nullable=False),
        sa.Column('is_bestseller', sa.Boolean(), nullable=False),
        sa.Column('tags', sa.Text(), nullable=True, comment='逗号分隔'),
        sa.Column('has_variants', sa.Boolean(), nullable=False),
        sa.Column('seo_title', sa.String(length=255), nullable=True),
        sa.Column('seo_description', sa.Text(), nullable=True),
        sa.Column('seo_keywords', sa.Text(), nullable=True),
        sa.Column('view_count', sa.Integer(), nullable=False),
        sa.Column('favorite_count', sa.Integer(), nullable=False),
        sa.Column('review_count', sa.Integer(), nullable=False),
        sa.Column('average_rating', sa.NUMERIC(precision=3, scale=2), nullable=False),
        _created_at(),
        _updated_at(),
        sa.Column('published_at', sa.DateTime(timezone=True), nullable=True, comment='上架时间'),
        sa.ForeignKeyConstraint(['brand_id'], ['brands.id'], ondelete='RESTRICT'),
        sa.ForeignKeyConstraint(['category_id'], ['categories.id'], ondelete='RESTRICT'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('sku', name='uq_products_sku'),
        sa.UniqueConstraint('slug', name='uq_products_slug'),
        sa.CheckConstraint(
            "status IN ('active','inactive','draft','out_of_stock','discontinued')", name='ck_products_status'
        ),
        sa.CheckConstraint(
            "condition IN ('new','refurbished','used','open_box')", name='ck_products_condition'
        ),
        sa.CheckConstraint('price >= 0', name='ck_products_price_non_negative'),
    )
    op.create_index('ix_products_brand_id', 'products', ['brand_id'], unique=False)
    op.create_index('ix_products_category_id', 'products', ['category_id'], unique=False)
    op.create_index('ix_products_status', 'products', ['status'], unique=False)
    op.create_index('ix_products_featured', 'products', ['featured'], unique=False)
    op.create_index('ix_products_price', 'products', ['price'], unique=False)
    op.create_index('ix_products_name', 'products', ['name'], unique=False)
    op.create_index('ix_products_published_at', 'products', ['published_at'], unique=False)

    op.create_table('product_images',
        sa.Column('id', sa.BigInteger(), nullable=False),
        sa.Column('product_id', sa.BigInteger(), nullable=False),
        sa.Column('url', sa.Text(), nullable=False),
        sa.Column('alt', sa.String(length=255), nullable=False),
        sa.Column('position', sa.Integer(), nullable=False),
        sa.Column('is_main', sa.Boolean(), nullable=False),
        sa.Column('thumbnail', sa.Text(), nullable=True),
        sa.Column('variants', sa.JSON(), nullable=True, comment='多尺寸 {small,medium,large}'),
        _created_at(),
        _updated_at(),
        sa.ForeignKeyConstraint(['product_id'], ['products.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(
        'ix_product_images_product_position', 'product_images', ['product_id', 'position'], unique=False
    )

    op.create_table('product_specifications',
        sa.Column('id', sa.BigInteger(), nullable=False),
        sa.Column('product_id', sa.BigInteger(), nullable=False),
        sa.Column('name', sa.String(length=100), nullable=False),
        sa.Column('value', sa.Text(), nullable=False),
        sa.Column('group', sa.String(length=100), nullable=True, comment='分组，例如 Technical'),
        sa.Column('display_order', sa.Integer(), nullable=False),
        _created_at(),
        _updated_at(),
        sa.ForeignKeyConstraint(['product_id'], ['products.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(
        'ix_product_specifications_product_id', 'product_specifications', ['product_id'], unique=False
    )
    op.create_index('ix_product_specifications_group', 'product_specifications', ['group'], unique=False)

    op.create_table('product_variants',
        sa.Column('id', sa.BigInteger(), nullable=False),
        sa.Column('product_id', sa.BigInteger(), nullable=False),
        sa.Column('sku', sa.String(length=100), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('options', sa.JSON(), nullable=False, comment='例如 {color: Red, size: Large}'),
        sa.Column('price', sa.NUMERIC(precision=10, scale=2), nullable=True, comment='为空时使用商品价格'),
        sa.Column('compare_at_price', sa.NUMERIC(precision=10, scale=2), nullable=True),
        sa.Column('image', sa.Text(), nullable=True),
        sa.Column('position', sa.Integer(), nullable=False),
        sa.Column('barcode', sa.String(length=100), nullable=True),
        sa.Column('weight', sa.Integer(), nullable=True),
        sa.Column('available', sa.Boolean(), nullable=False),
        _created_at(),
        _updated_at(),
        sa.ForeignKeyConstraint(['product_id'], ['products.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('sku', name='uq_product_variants_sku'),
    )
    op.create_index('ix_product_variants_product_id', 'product_variants', ['product_id'], unique=False)
    op.create_index('ix_product_variants_barcode', 'product_variants', ['barcode'], unique=False)
    op.create_index('ix_product_variants_available', 'product_variants', ['available'], unique=False)

    # ---- 库存 ----
    op.create_table('product_inventory',
        sa.Column('id', sa.BigInteger(), nullable=False),
        sa.Column('product_id', sa.BigInteger(), nullable=False, comment='商品ID'),
        sa.Column('quantity', sa.Integer(), nullable=False, comment='库存数量'),
        sa.Column('policy', sa.String(length=30), nullable=False, comment='库存策略'),
        sa.Column('low_stock_threshold', sa.Integer(), nullable=True, comment='低库存阈值'),
        sa.Column('allow_backorder', sa.Boolean(), nullable=False, comment='允许缺货下单'),
        sa.Column('reserved', sa.Integer(), nullable=False, comment='已占用数量'),
        sa.Column('restock_date', sa.DateTime(timezone=True), nullable=True, comment='预计补货日期'),
        _created_at(),
        _updated_at(),
        sa.ForeignKeyConstraint(['product_id'], ['products.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('product_id', name='uq_product_inventory_product'),
        sa.CheckConstraint(f'policy {INVENTORY_POLICY_CHECK}', name='ck_product_inventory_policy'),
        sa.CheckConstraint('quantity >= 0', name='ck_product_inventory_quantity'),
        sa.CheckConstraint('reserved >= 0', name='ck_product_inventory_reserved'),
    )
    op.create_index('ix_product_inventory_quantity', 'product_inventory', ['quantity'], unique=False)

    op.create_table('variant_inventory',
        sa.Column('id', sa.BigInteger(), nullable=False),
        sa.Column('variant_id', sa.BigInteger(), nullable=False, comment='变体ID'),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('policy', sa.String(length=30), nullable=False),
        sa.Column('low_stock_threshold', sa.Integer(), nullable=True),
        sa.Column('allow_backorder', sa.Boolean(), nullable=False),
        sa.Column('reserved', sa.Integer(), nullable=False),
        sa.Column('restock_date', sa.DateTime(timezone=True), nullable=True),
        _created_at(),
        _updated_at(),
        sa.ForeignKeyConstraint(['variant_id'], ['product_variants.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('variant_id', name='uq_variant_inventory_variant'),
        sa.CheckConstraint(f'policy {INVENTORY_POLICY_CHECK}', name='ck_variant_inventory_policy'),
        sa.CheckConstraint('quantity >= 0', name='ck_variant_inventory_quantity'),
        sa.CheckConstraint('reserved >= 0', name='ck_variant_inventory_reserved'),
    )
    op.create_index('ix_variant_inventory_quantity', 'variant_inventory', ['quantity'], unique=False)

    # ---- 购物车与收藏 ----
    op.create_table('carts',
        sa.Column('id', sa.BigInteger(), nullable=False),
        sa.Column('user_id', sa.BigInteger(), nullable=True, comment='用户ID'),
        sa.Column('session_id', sa.String(length=255), nullable=True, comment='游客会话ID'),
        sa.Column('metadata', sa.JSON(), nullable=True),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=True, comment='游客购物车过期时间'),
        _created_at(),
        _updated_at(),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('user_id', name='uq_carts_user'),
    )
    op.create_index('ix_carts_session_id', 'carts', ['session_id'], unique=False)
    op.create_index('ix_carts_expires_at', 'carts', ['expires_at'], unique=False)

    op.create_table('cart_items',
        sa.Column('id', sa.BigInteger(), nullable=False),
        sa.Column('cart_id', sa.BigInteger(), nullable=False),
        sa.Column('product_id', sa.BigInteger(), nullable=False),
        sa.Column('variant_id', sa.BigInteger(), nullable=True),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('metadata', sa.JSON(), nullable=True),
        _created_at(),
        _updated_at(),
        sa.ForeignKeyConstraint(['cart_id'], ['carts.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['product_id'], ['products.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['variant_id'], ['product_variants.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('cart_id', 'product_id', 'variant_id', name='uq_cart_items_cart_product_variant'),
        sa.CheckConstraint('quantity >= 1 AND quantity <= 999', name='ck_cart_items_quantity'),
    )
    op.create_index('ix_cart_items_cart_id', 'cart_items', ['cart_id'], unique=False)
    op.create_index('ix_cart_items_product_id', 'cart_items', ['product_id'], unique=False)

    op.create_table('favorites',
        sa.Column('id', sa.BigInteger(), nullable=False),
        sa.Column('user_id', sa.BigInteger(), nullable=False),
        sa.Column('product_id', sa.BigInteger(), nullable=False),
        sa.Column('variant_id', sa.BigInteger(), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True, comment='用户备注'),
        sa.Column('metadata', sa.JSON(), nullable=True),
        _created_at(),
        _updated_at(),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['product_id'], ['products.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['variant_id'], ['product_variants.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('user_id', 'product_id', 'variant_id', name='uq_favorites_user_product_variant'),
    )
    op.create_index('ix_favorites_user_id', 'favorites', ['user_id'], unique=False)
    op.create_index('ix_favorites_product_id', 'favorites', ['product_id'], unique=False)
    op.create_index('ix_favorites_user_created', 'favorites', ['user_id', 'created_at'], unique=False)

    # ---- 订单 ----
    op.create_table('orders',
        sa.Column('id', sa.BigInteger(), nullable=False),
        sa.Column('order_number', sa.String(length=50), nullable=False, comment='订单号'),
        sa.Column('user_id', sa.BigInteger(), nullable=False, comment='下单用户'),
        sa.Column('status', sa.String(length=30), nullable=False, comment='订单状态'),
        sa.Column('payment_status', sa.String(length=20), nullable=False, comment='支付状态'),
        sa.Column('fulfillment_status', sa.String(length=20), nullable=False, comment='履约状态'),
        sa.Column('subtotal', sa.NUMERIC(precision=10, scale=2), nullable=False, comment='商品小计'),
        sa.Column('shipping_cost', sa.NUMERIC(precision=10, scale=2), nullable=False),
        sa.Column('tax', sa.NUMERIC(precision=10, scale=2), nullable=False),
        sa.Column('discount', sa.NUMERIC(precision=10, scale=2), nullable=False),
        sa.Column('total', sa.NUMERIC(precision=10, scale=2), nullable=False, comment='应付总额'),
        sa.Column('currency', sa.String(length=10), nullable=False),
        sa.Column('shipping_address_id', sa.BigInteger(), nullable=False, comment='收货地址'),
        sa.Column('billing_address_id', sa.BigInteger(), nullable=True, comment='账单地址'),
        sa.Column('shipping_method_id', sa.String(length=100), nullable=False),
        sa.Column('shipping_method_name', sa.String(length=255), nullable=False),
        sa.Column('shipping_estimated_days', sa.Integer(), nullable=True),
        sa.Column('payment_method_id', sa.String(length=100), nullable=False),
        sa.Column('payment_method_type', sa.String(length=100), nullable=False, comment='例如 cod / card'),
        sa.Column('payment_method_name', sa.String(length=255), nullable=False),
        sa.Column('tracking_number', sa.String(length=255), nullable=True),
        sa.Column('tracking_url', sa.Text(), nullable=True),
        sa.Column('customer_notes', sa.Text(), nullable=True),
        sa.Column('admin_notes', sa.Text(), nullable=True),
        sa.Column('cancel_reason', sa.Text(), nullable=True),
        sa.Column('refund_amount', sa.NUMERIC(precision=10, scale=2), nullable=True),
        sa.Column('metadata', sa.JSON(), nullable=True),
        _created_at(),
        _updated_at(),
        sa.Column('paid_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('shipped_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('delivered_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('cancelled_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='RESTRICT'),
        sa.ForeignKeyConstraint(['shipping_address_id'], ['addresses.id'], ondelete='RESTRICT'),
        sa.ForeignKeyConstraint(['billing_address_id'], ['addresses.id'], ondelete='RESTRICT'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('order_number', name='uq_orders_order_number'),
        sa.CheckConstraint(f'status {ORDER_STATUS_CHECK}', name='ck_orders_status'),
        sa.CheckConstraint(
            "payment_status IN ('pending','authorized','paid','partial','refunded','voided','failed')",
            name='ck_orders_payment_status'
        ),
        sa.CheckConstraint(
            "fulfillment_status IN ('unfulfilled','partial','fulfilled','restocked')",
            name='ck_orders_fulfillment_status'
        ),
        sa.CheckConstraint('total >= 0', name='ck_orders_total_non_negative'),
    )
    op.create_index('ix_orders_user_id', 'orders', ['user_id'], unique=False)
    op.create_index('ix_orders_status', 'orders', ['status'], unique=False)
    op.create_index('ix_orders_payment_status', 'orders', ['payment_status'], unique=False)
    op.create_index('ix_orders_fulfillment_status', 'orders', ['fulfillment_status'], unique=False)
    op.create_index('ix_orders_created_at', 'orders', ['created_at'], unique=False)
    op.create_index('ix_orders_tracking_number', 'orders', ['tracking_number'], unique=False)

    op.create_table('order_items',
        sa.Column('id', sa.BigInteger(), nullable=False),
        sa.Column('order_id', sa.BigInteger(), nullable=False),
        sa.Column('product_id', sa.BigInteger(), nullable=False),
        sa.Column('variant_id', sa.BigInteger(), nullable=True),
        sa.Column('sku', sa.String(length=100), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('slug', sa.String(length=255), nullable=False),
        sa.Column('image', sa.Text(), nullable=True),
        sa.Column('variant_options', sa.JSON(), nullable=True),
        sa.Column('price', sa.NUMERIC(precision=10, scale=2), nullable=False, comment='单价'),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('subtotal', sa.NUMERIC(precision=10, scale=2), nullable=False),
        sa.Column('tax', sa.NUMERIC(precision=10, scale=2), nullable=False),
        sa.Column('discount', sa.NUMERIC(precision=10, scale=2), nullable=False),
        sa.Column('total', sa.NUMERIC(precision=10, scale=2), nullable=False),
        sa.Column('refunded_quantity', sa.Integer(), nullable=False),
        sa.Column('refunded_amount', sa.NUMERIC(precision=10, scale=2), nullable=False),
        sa.Column('fulfillment_status', sa.String(length=50), nullable=False),
        _created_at(),
        _updated_at(),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['product_id'], ['products.id'], ondelete='RESTRICT'),
        sa.ForeignKeyConstraint(['variant_id'], ['product_variants.id'], ondelete='RESTRICT'),
        sa.PrimaryKeyConstraint('id'),
        sa.CheckConstraint('quantity > 0', name='ck_order_items_quantity_positive'),
    )
    op.create_index('ix_order_items_order_id', 'order_items', ['order_id'], unique=False)
    op.create_index('ix_order_items_product_id', 'order_items', ['product_id'], unique=False)
    op.create_index('ix_order_items_sku', 'order_items', ['sku'], unique=False)

    op.create_table('order_status_history',
        sa.Column('id', sa.BigInteger(), nullable=False),
        sa.Column('order_id', sa.BigInteger(), nullable=False),
        sa.Column('from_status', sa.String(length=30), nullable=True),
        sa.Column('to_status', sa.String(length=30), nullable=False),
        sa.Column('reason', sa.Text(), nullable=True),
        sa.Column('changed_by', sa.BigInteger(), nullable=True, comment='操作人'),
        sa.Column('metadata', sa.JSON(), nullable=True),
        _created_at(),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['changed_by'], ['users.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id'),
        sa.CheckConstraint(f'to_status {ORDER_STATUS_CHECK}', name='ck_order_status_history_to_status'),
    )
    op.create_index('ix_order_status_history_order_id', 'order_status_history', ['order_id'], unique=False)
    op.create_index(
        'ix_order_status_history_created_at', 'order_status_history', ['created_at'], unique=False
    )

    # ---- 支付 ----
    op.create_table('payments',
        sa.Column('id', sa.BigInteger(), nullable=False),
        sa.Column('order_id', sa.BigInteger(), nullable=False),
        sa.Column('user_id', sa.BigInteger(), nullable=False),
        sa.Column('type', sa.String(length=20), nullable=False, comment='流水类型'),
        sa.Column('status', sa.String(length=30), nullable=False, comment='流水状态'),
        sa.Column('provider', sa.String(length=20), nullable=False, comment='支付渠道'),
        sa.Column('payment_method_id', sa.String(length=100), nullable=False),
        sa.Column('amount', sa.NUMERIC(precision=10, scale=2), nullable=False),
        sa.Column('currency', sa.String(length=10), nullable=False),
        sa.Column('fee', sa.NUMERIC(precision=10, scale=2), nullable=True),
        sa.Column('net_amount', sa.NUMERIC(precision=10, scale=2), nullable=False, comment='扣除手续费后金额'),
        sa.Column('provider_transaction_id', sa.String(length=255), nullable=True),
        sa.Column('provider_reference_id', sa.String(length=255), nullable=True),
        sa.Column('provider_response', sa.JSON(), nullable=True),
        sa.Column('error_code', sa.String(length=100), nullable=True),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('metadata', sa.JSON(), nullable=True),
        sa.Column('ip_address', sa.String(length=45), nullable=True),
        sa.Column('user_agent', sa.Text(), nullable=True),
        _created_at(),
        _updated_at(),
        sa.Column('authorized_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('failed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('refunded_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='RESTRICT'),
        sa.PrimaryKeyConstraint('id'),
        sa.CheckConstraint(
            "type IN ('payment','refund','authorization','capture')", name='ck_payments_type'
        ),
        sa.CheckConstraint(
            "status IN ('pending','processing','authorized','completed','failed','cancelled',"
            "'refunded','partially_refunded')",
            name='ck_payments_status'
        ),
        sa.CheckConstraint(
            "provider IN ('cod','qicard','zaincash','stripe','paypal')", name='ck_payments_provider'
        ),
        sa.CheckConstraint('amount >= 0', name='ck_payments_amount_non_negative'),
    )
    op.create_index('ix_payments_order_id', 'payments', ['order_id'], unique=False)
    op.create_index('ix_payments_user_id', 'payments', ['user_id'], unique=False)
    op.create_index('ix_payments_status', 'payments', ['status'], unique=False)
    op.create_index(
        'ix_payments_provider_transaction_id', 'payments', ['provider_transaction_id'], unique=False
    )
    op.create_index('ix_payments_created_at', 'payments', ['created_at'], unique=False)

    # ---- 发运 ----
    op.create_table('shipments',
        sa.Column('id', sa.BigInteger(), nullable=False),
        sa.Column('order_id', sa.BigInteger(), nullable=False, comment='关联订单ID'),
        sa.Column('tracking_number', sa.String(length=255), nullable=True, comment='运单号'),
        sa.Column('carrier', sa.String(length=255), nullable=True, comment='承运商'),
        sa.Column('shipping_method_id', sa.String(length=100), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False, comment='发运状态'),
        sa.Column('origin_address', sa.JSON(), nullable=False, comment='发货地址'),
        sa.Column('destination_address', sa.JSON(), nullable=False, comment='收货地址'),
        sa.Column('weight', sa.Integer(), nullable=True, comment='重量（克）'),
        sa.Column('dimensions', sa.JSON(), nullable=True),
        sa.Column('package_count', sa.Integer(), nullable=False),
        sa.Column('estimated_delivery_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('actual_delivery_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('cost', sa.NUMERIC(precision=10, scale=2), nullable=False, comment='运费'),
        sa.Column('currency', sa.String(length=10), nullable=False),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('tracking_url', sa.Text(), nullable=True),
        sa.Column('metadata', sa.JSON(), nullable=True),
        _created_at(),
        _updated_at(),
        sa.Column('shipped_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('delivered_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('tracking_number', name='uq_shipments_tracking_number'),
        sa.CheckConstraint(f'status {SHIPMENT_STATUS_CHECK}', name='ck_shipments_status'),
    )
    op.create_index('ix_shipments_order_id', 'shipments', ['order_id'], unique=False)
    op.create_index('ix_shipments_status', 'shipments', ['status'], unique=False)
    op.create_index('ix_shipments_created_at', 'shipments', ['created_at'], unique=False)

    op.create_table('shipment_tracking_events',
        sa.Column('id', sa.BigInteger(), nullable=False),
        sa.Column('shipment_id', sa.BigInteger(), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('location', sa.String(length=255), nullable=True),
        sa.Column('description', sa.Text(), nullable=False),
        sa.Column('metadata', sa.JSON(), nullable=True),
        sa.Column('timestamp', sa.DateTime(timezone=True), nullable=False, comment='事件时间'),
        _created_at(),
        sa.ForeignKeyConstraint(['shipment_id'], ['shipments.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.CheckConstraint(f'status {SHIPMENT_STATUS_CHECK}', name='ck_shipment_tracking_events_status'),
    )
    op.create_index(
        'ix_shipment_tracking_events_shipment_id', 'shipment_tracking_events', ['shipment_id'], unique=False
    )
    op.create_index(
        'ix_shipment_tracking_events_timestamp', 'shipment_tracking_events', ['timestamp'], unique=False
    )


def downgrade() -> None:
    """Drop all tables in reverse dependency order"""
    # 索引随表一起删除
    for table in (
        'shipment_tracking_events',
        'shipments',
        'payments',
        'order_status_history',
        'order_items',
        'orders',
        'favorites',
        'cart_items',
        'carts',
        'variant_inventory',
        'product_inventory',
        'product_variants',
        'product_specifications',
        'product_images',
        'products',
        'categories',
        'brands',
        'user_activity',
        'user_preferences',
        'addresses',
        'verification_tokens',
        'user_sessions',
        'accounts',
        'users',
    ):
        op.drop_table(table)
