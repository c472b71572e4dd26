"""Schema v1 - Initial database schema.

This version includes tables for:
- Listings with their status and sort columns
- Completed purchase transactions
- Mystery box tiers and purchases
"""

schema = {
    'version': 1,
    'tables': [
        {
            'name': 'listings',
            'columns': [
                {'name': 'id', 'type': 'TEXT', 'primary_key': True},
                {'name': 'item_id', 'type': 'TEXT', 'nullable': False},
                {'name': 'item_type', 'type': 'TEXT', 'nullable': False},
                {'name': 'item_data', 'type': 'JSONB'},
                {'name': 'seller_username', 'type': 'TEXT', 'nullable': False},
                {'name': 'seller_wallet', 'type': 'TEXT', 'nullable': False},
                {'name': 'price_usdc', 'type': 'DECIMAL', 'nullable': False},
                {'name': 'status', 'type': 'TEXT', 'nullable': False, 'default': "'active'"},
                {'name': 'created_at', 'type': 'INT8', 'nullable': False},
                {'name': 'expires_at', 'type': 'INT8'}
            ],
            'indexes': [
                {'name': 'idx_listings_seller', 'columns': ['seller_username']},
                {'name': 'idx_listings_active_newest', 'columns': ['created_at DESC', 'id'],
                 'where': "status = 'active'"},
                {'name': 'idx_listings_active_price', 'columns': ['price_usdc', 'id'],
                 'where': "status = 'active'"},
                {'name': 'idx_listings_item_active', 'columns': ['item_id'], 'unique': True,
                 'where': "status = 'active'"}
            ]
        },
        {
            'name': 'transactions',
            'columns': [
                {'name': 'id', 'type': 'TEXT', 'primary_key': True},
                {'name': 'type', 'type': 'TEXT', 'nullable': False},
                {'name': 'buyer_username', 'type': 'TEXT', 'nullable': False},
                {'name': 'buyer_wallet', 'type': 'TEXT', 'nullable': False},
                {'name': 'seller_username', 'type': 'TEXT'},
                {'name': 'seller_wallet', 'type': 'TEXT'},
                {'name': 'listing_id', 'type': 'TEXT'},
                {'name': 'mystery_box_tier_id', 'type': 'TEXT'},
                {'name': 'price_usdc', 'type': 'DECIMAL', 'nullable': False},
                {'name': 'items', 'type': 'JSONB', 'nullable': False, 'default': "'[]'"},
                {'name': 'tx_hash', 'type': 'TEXT', 'nullable': False},
                {'name': 'timestamp', 'type': 'INT8', 'nullable': False}
            ],
            'foreign_keys': [
                {'columns': ['listing_id'], 'references': 'listings(id)'}
            ],
            'indexes': [
                {'name': 'idx_transactions_buyer', 'columns': ['buyer_username']},
                {'name': 'idx_transactions_seller', 'columns': ['seller_username']},
                {'name': 'idx_transactions_listing', 'columns': ['listing_id'], 'unique': True}
            ]
        },
        {
            'name': 'mystery_box_tiers',
            'columns': [
                {'name': 'id', 'type': 'TEXT', 'primary_key': True},
                {'name': 'name', 'type': 'TEXT', 'nullable': False},
                {'name': 'price_usdc', 'type': 'DECIMAL', 'nullable': False},
                {'name': 'description', 'type': 'TEXT'},
                {'name': 'rarity_weights', 'type': 'JSONB', 'nullable': False}
            ]
        },
        {
            'name': 'mystery_box_purchases',
            'columns': [
                {'name': 'id', 'type': 'TEXT', 'primary_key': True},
                {'name': 'tier_id', 'type': 'TEXT', 'nullable': False},
                {'name': 'buyer_username', 'type': 'TEXT', 'nullable': False},
                {'name': 'buyer_wallet', 'type': 'TEXT', 'nullable': False},
                {'name': 'price_usdc', 'type': 'DECIMAL', 'nullable': False},
                {'name': 'item_generated', 'type': 'JSONB'},
                {'name': 'tx_hash', 'type': 'TEXT', 'nullable': False},
                {'name': 'timestamp', 'type': 'INT8', 'nullable': False}
            ],
            'foreign_keys': [
                {'columns': ['tier_id'], 'references': 'mystery_box_tiers(id)'}
            ],
            'indexes': [
                {'name': 'idx_purchases_buyer', 'columns': ['buyer_username']}
            ]
        }
    ]
}
