from decimal import Decimal

from django.contrib.auth import get_user_model

from auditorias.models import (
    Almacen,
    CategoriaProducto,
    Estante,
    Producto,
    StockProducto,
)

User = get_user_model()


class EscenarioAuditoriaMixin:
    """
    Almacén con tres productos:

        P1 "Tornillos"  stock 10, costo 2   (categoría Ferretería, estante A1)
        P2 "Pintura"    stock 5,  costo 10  (categoría Pinturas,  estante A1)
        P3 "Brochas"    stock 0,  costo 1   (categoría Pinturas,  estante B1)
    """

    def setUp(self):
        self.user = User.objects.create_user(
            username="auditor",
            password="password123",
        )
        self.supervisor = User.objects.create_user(
            username="supervisor",
            password="password123",
        )
        self.almacen = Almacen.objects.create(
            nombre="Bodega Central",
            ubicacion="Santiago",
        )
        self.otro_almacen = Almacen.objects.create(
            nombre="Bodega Norte",
            ubicacion="Antofagasta",
        )
        self.estante_a = Estante.objects.create(almacen=self.almacen, nombre="A1")
        self.estante_b = Estante.objects.create(almacen=self.almacen, nombre="B1")
        self.estante_otro = Estante.objects.create(almacen=self.otro_almacen, nombre="N1")

        self.ferreteria = CategoriaProducto.objects.create(nombre="Ferretería")
        self.pinturas = CategoriaProducto.objects.create(nombre="Pinturas")

        self.p1 = Producto.objects.create(codigo="P1", nombre="Tornillos", categoria=self.ferreteria)
        self.p2 = Producto.objects.create(codigo="P2", nombre="Pintura", categoria=self.pinturas)
        self.p3 = Producto.objects.create(
            codigo="P3",
            nombre="Brochas",
            categoria=self.pinturas,
            maneja_series=True,
        )

        self.s1 = StockProducto.objects.create(
            producto=self.p1,
            almacen=self.almacen,
            estante=self.estante_a,
            cantidad_disponible=Decimal("10"),
            costo_promedio=Decimal("2"),
        )
        self.s2 = StockProducto.objects.create(
            producto=self.p2,
            almacen=self.almacen,
            estante=self.estante_a,
            cantidad_disponible=Decimal("5"),
            cantidad_reservada=Decimal("1"),
            costo_promedio=Decimal("10"),
        )
        self.s3 = StockProducto.objects.create(
            producto=self.p3,
            almacen=self.almacen,
            estante=self.estante_b,
            cantidad_disponible=Decimal("0"),
            costo_promedio=Decimal("1"),
        )
