from decimal import Decimal

import django.core.validators
import django.db.models.deletion
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name='Loan',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('bank_name', models.CharField(blank=True, default='', help_text='Lending institution.', max_length=120)),
                ('account_number', models.CharField(blank=True, db_index=True, default='', help_text='Loan account number at the lender.', max_length=64)),
                ('loan_type', models.CharField(choices=[('Home', 'Home'), ('Car', 'Car'), ('Personal', 'Personal'), ('Education', 'Education'), ('Gold', 'Gold'), ('Business', 'Business'), ('Two-Wheeler', 'Two-Wheeler')], default='Personal', max_length=20)),
                ('principal_amount', models.DecimalField(decimal_places=2, help_text='Original principal borrowed.', max_digits=15, validators=[django.core.validators.MinValueValidator(Decimal('0.01'))])),
                ('interest_rate', models.DecimalField(decimal_places=3, help_text='Annual nominal interest rate (percentage).', max_digits=6, validators=[django.core.validators.MinValueValidator(Decimal('0'))])),
                ('tenure_months', models.PositiveIntegerField(help_text='Loan tenure in months.', validators=[django.core.validators.MinValueValidator(1)])),
                ('emi_amount', models.DecimalField(blank=True, decimal_places=2, help_text='Current installment amount, calculated or overridden.', max_digits=15, null=True)),
                ('emi_overridden', models.BooleanField(default=False, help_text='Whether the installment was supplied manually.')),
                ('start_date', models.DateField(help_text='Disbursement date. The first EMI is due one month later.')),
                ('repayment_mode', models.CharField(choices=[('Auto Debit', 'Auto Debit'), ('Manual', 'Manual'), ('Standing Instruction', 'Standing Instruction')], default='Auto Debit', max_length=30)),
                ('status', models.CharField(choices=[('active', 'Active'), ('foreclosed', 'Foreclosed'), ('completed', 'Completed')], db_index=True, default='active', max_length=12)),
                ('notes', models.TextField(blank=True, default='')),
                ('closure_date', models.DateField(blank=True, help_text='Date the loan was foreclosed or fully repaid.', null=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('closed_at', models.DateTimeField(blank=True, null=True)),
            ],
            options={
                'db_table': 'loans',
                'ordering': ['-created_at'],
                'indexes': [models.Index(fields=['status', 'start_date'], name='idx_loan_status_start')],
            },
        ),
        migrations.CreateModel(
            name='EmiEvent',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('event_type', models.CharField(choices=[('part_payment', 'Part payment'), ('foreclosure', 'Foreclosure')], max_length=20)),
                ('event_date', models.DateField()),
                ('amount', models.DecimalField(decimal_places=2, help_text='Amount applied (payoff amount for a foreclosure).', max_digits=15)),
                ('reduction_policy', models.CharField(blank=True, choices=[('tenure_reduction', 'Reduce tenure'), ('installment_reduction', 'Reduce EMI')], max_length=24, null=True)),
                ('interest_saved', models.DecimalField(decimal_places=2, default=Decimal('0.00'), max_digits=15)),
                ('accrued_interest', models.DecimalField(blank=True, decimal_places=2, max_digits=15, null=True)),
                ('new_tenure_months', models.PositiveIntegerField(blank=True, null=True)),
                ('new_emi_amount', models.DecimalField(blank=True, decimal_places=2, max_digits=15, null=True)),
                ('notes', models.TextField(blank=True, default='')),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('loan', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='events', to='loans.loan')),
            ],
            options={
                'db_table': 'emi_events',
                'ordering': ['loan_id', 'created_at', 'id'],
            },
        ),
        migrations.CreateModel(
            name='EmiScheduleEntry',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('sequence', models.PositiveIntegerField(help_text='1-based installment index.')),
                ('due_date', models.DateField()),
                ('installment_amount', models.DecimalField(decimal_places=2, max_digits=15)),
                ('interest_component', models.DecimalField(decimal_places=2, max_digits=15)),
                ('principal_component', models.DecimalField(decimal_places=2, max_digits=15)),
                ('remaining_principal', models.DecimalField(decimal_places=2, help_text='Principal outstanding after this installment.', max_digits=15)),
                ('status', models.CharField(choices=[('pending', 'Pending'), ('paid', 'Paid'), ('superseded', 'Superseded')], db_index=True, default='pending', max_length=12)),
                ('paid_date', models.DateField(blank=True, null=True)),
                ('payment_method', models.CharField(blank=True, max_length=50, null=True)),
                ('paid_amount', models.DecimalField(blank=True, decimal_places=2, max_digits=15, null=True)),
                ('is_adjusted', models.BooleanField(default=False, help_text='Row was regenerated by a part-payment.')),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('adjustment_event', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='adjusted_entries', to='loans.emievent')),
                ('loan', models.ForeignKey(help_text='The loan this installment belongs to.', on_delete=django.db.models.deletion.CASCADE, related_name='schedule', to='loans.loan')),
            ],
            options={
                'db_table': 'emi_schedule',
                'ordering': ['loan_id', 'sequence'],
                'constraints': [models.UniqueConstraint(fields=('loan', 'sequence'), name='uniq_emi_loan_sequence')],
            },
        ),
    ]
