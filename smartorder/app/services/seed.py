"""Default venue data used by the ``initialize_*`` operations."""

from __future__ import annotations

DEFAULT_CATEGORIES = [
    {"id": "mon-chinh", "name": "Món chính", "icon": "🍜", "sort": 1},
    {"id": "khai-vi", "name": "Khai vị", "icon": "🥗", "sort": 2},
    {"id": "mon-phu", "name": "Món phụ", "icon": "🍲", "sort": 3},
    {"id": "nuoc-uong", "name": "Nước uống", "icon": "🥤", "sort": 4},
    {"id": "trang-mieng", "name": "Tráng miệng", "icon": "🍮", "sort": 5},
    {"id": "combo", "name": "Combo", "icon": "🎁", "sort": 6},
]

DEFAULT_MENU = [
    {
        "id": "pho-bo",
        "name": "Phở bò",
        "description": "Phở bò truyền thống Hà Nội với thịt bò tươi ngon",
        "price": 70000,
        "category": "mon-chinh",
    },
    {
        "id": "pho-ga",
        "name": "Phở gà",
        "description": "Phở gà thơm ngon, nước dùng ngọt tự nhiên",
        "price": 65000,
        "category": "mon-chinh",
    },
    {
        "id": "bun-bo-hue",
        "name": "Bún bò Huế",
        "description": "Bún bò Huế cay nồng đặc trưng miền Trung",
        "price": 75000,
        "category": "mon-chinh",
    },
    {
        "id": "bun-cha",
        "name": "Bún chả",
        "description": "Bún chả Hà Nội với thịt nướng thơm lừng",
        "price": 70000,
        "category": "mon-chinh",
    },
    {"id": "com-tam-suon", "name": "Cơm tấm sườn", "price": 65000, "category": "mon-chinh"},
    {"id": "com-ga-roti", "name": "Cơm gà roti", "price": 60000, "category": "mon-chinh"},
    {"id": "goi-cuon", "name": "Gỏi cuốn", "price": 35000, "category": "khai-vi"},
    {"id": "nem-ran", "name": "Nem rán", "price": 40000, "category": "khai-vi"},
    {"id": "goi-ngo-sen", "name": "Gỏi ngó sen tôm thịt", "price": 55000, "category": "khai-vi"},
    {"id": "canh-chua", "name": "Canh chua cá", "price": 80000, "category": "mon-phu"},
    {"id": "rau-muong-xao", "name": "Rau muống xào tỏi", "price": 30000, "category": "mon-phu"},
    {"id": "tra-da", "name": "Trà đá", "price": 10000, "category": "nuoc-uong"},
    {"id": "nuoc-chanh", "name": "Nước chanh tươi", "price": 20000, "category": "nuoc-uong"},
    {"id": "nuoc-dua", "name": "Nước dừa tươi", "price": 25000, "category": "nuoc-uong"},
    {"id": "ca-phe-sua", "name": "Cà phê sữa đá", "price": 25000, "category": "nuoc-uong"},
    {"id": "che-ba-mau", "name": "Chè ba màu", "price": 25000, "category": "trang-mieng"},
    {"id": "banh-flan", "name": "Bánh flan", "price": 20000, "category": "trang-mieng"},
    {"id": "che-thap-cam", "name": "Chè thập cẩm", "price": 30000, "category": "trang-mieng"},
    {"id": "combo-pho", "name": "Combo Phở", "price": 95000, "category": "combo"},
    {"id": "combo-com-tam", "name": "Combo Cơm tấm", "price": 85000, "category": "combo"},
]

# Capacities cycle through this list by the table's position in its area.
CAPACITY_CYCLE = [4, 6, 2, 8, 10]
